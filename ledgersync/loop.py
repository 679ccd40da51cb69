"""
Background event loop for synchronous callers.

Streamlit runs every browser session's script in its own thread. The HTTP
client and the database engine are bound to the loop that created them, so
all sessions submit their coroutines to one loop running on a daemon thread
and block on the result. Coroutines from different sessions interleave on
that loop; the cycle lock decides which of two concurrent cycles runs.
"""

import asyncio
import threading
from typing import Any, Awaitable, Optional

import structlog


logger = structlog.get_logger(__name__)


class BackgroundLoop:
    """
    An event loop running forever on its own thread.

    Usage:
        loop = BackgroundLoop()
        report = loop.run(orchestrator.run_cycle())
        loop.close()
    """

    def __init__(self, name: str = "ledgersync-loop"):
        self._loop = asyncio.new_event_loop()
        self._thread = threading.Thread(target=self._serve, name=name, daemon=True)
        self._thread.start()

    def _serve(self) -> None:
        asyncio.set_event_loop(self._loop)
        self._loop.run_forever()

    @property
    def is_running(self) -> bool:
        return self._thread.is_alive() and not self._loop.is_closed()

    def run(self, coro: Awaitable[Any], timeout: Optional[float] = None) -> Any:
        """
        Run a coroutine on the loop and wait for it.

        Safe to call from any thread except the loop's own.

        Raises:
            RuntimeError: If the loop was closed
            Whatever the coroutine raises
        """
        if not self.is_running:
            raise RuntimeError("Background loop is closed")
        future = asyncio.run_coroutine_threadsafe(coro, self._loop)
        return future.result(timeout)

    def close(self) -> None:
        """Stop the loop and wait for its thread."""
        if self._loop.is_closed():
            return
        self._loop.call_soon_threadsafe(self._loop.stop)
        self._thread.join()
        self._loop.close()
        logger.debug("background_loop_closed")
