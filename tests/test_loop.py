"""
Tests for the background event loop used by the dashboard

These tests are synchronous on purpose: they call in from plain threads,
the way Streamlit sessions do.
"""

import asyncio
import threading

import pytest

from ledgersync.loop import BackgroundLoop
from ledgersync.orchestrator import CycleAlreadyRunningError, CycleOrchestrator


@pytest.fixture
def background_loop():
    loop = BackgroundLoop()
    yield loop
    loop.close()


class TestBackgroundLoop:
    """Tests for running coroutines from other threads."""

    def test_returns_result_and_raises(self, background_loop):
        """Test results and exceptions cross the thread boundary."""
        async def fail():
            raise ValueError("bad input")

        assert background_loop.run(asyncio.sleep(0, result=42)) == 42
        with pytest.raises(ValueError):
            background_loop.run(fail())

    def test_calls_from_two_threads_overlap(self, background_loop):
        """Test a second caller isn't blocked or broken by a long-running one."""
        started = threading.Event()
        release = threading.Event()

        async def slow():
            started.set()
            while not release.is_set():
                await asyncio.sleep(0.01)
            return "slow"

        results = {}
        worker = threading.Thread(target=lambda: results.update(slow=background_loop.run(slow())))
        worker.start()
        assert started.wait(5)

        assert background_loop.run(asyncio.sleep(0, result="fast")) == "fast"

        release.set()
        worker.join(5)
        assert results["slow"] == "slow"

    def test_closed_loop_refuses_work(self):
        """Test nothing is submitted after close."""
        loop = BackgroundLoop()
        loop.close()
        coro = asyncio.sleep(0)
        with pytest.raises(RuntimeError):
            loop.run(coro)
        coro.close()

    def test_concurrent_cycle_from_another_session_is_rejected(
        self, background_loop, engine, store, sync_settings, decision_logger,
    ):
        """Test a second trigger while a cycle runs gets the already-running error."""
        orchestrator = CycleOrchestrator(engine, store, sync_settings, decision_logger)
        started = threading.Event()
        release = threading.Event()
        original = store.get_company_account_links

        async def slow_links(active_only=True):
            started.set()
            while not release.is_set():
                await asyncio.sleep(0.01)
            return await original(active_only)

        store.get_company_account_links = slow_links
        results = {}
        first = threading.Thread(
            target=lambda: results.update(report=background_loop.run(orchestrator.run_cycle()))
        )
        first.start()
        assert started.wait(5)

        try:
            # Read pages keep working while the cycle is in flight
            assert background_loop.run(store.list_watermarks()) == []
            with pytest.raises(CycleAlreadyRunningError):
                background_loop.run(orchestrator.run_cycle())
        finally:
            release.set()
            first.join(5)

        assert results["report"].errors == 0
        assert not orchestrator.is_running


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
