"""
Command line runner.

    python -m ledgersync --once     run one cycle, print the report as JSON
    python -m ledgersync            poll every SYNC_INTERVAL_MINUTES
"""

import argparse
import asyncio
import json
import sys
from typing import Optional

import structlog

from ledgersync.audit import configure_logging
from ledgersync.config import get_settings
from ledgersync.orchestrator import (
    CycleAlreadyRunningError,
    CycleOrchestrator,
    create_app_components,
)


logger = structlog.get_logger(__name__)


async def _tick(orchestrator: CycleOrchestrator) -> Optional[dict]:
    try:
        report = await orchestrator.run_cycle()
    except CycleAlreadyRunningError:
        logger.info("tick_skipped_cycle_running")
        return None
    return report.model_dump(mode="json")


async def run(once: bool) -> int:
    settings = get_settings()
    configure_logging(settings.app.log_level)

    orchestrator, store, ledger = create_app_components(settings)
    try:
        await store.create_tables()

        if once:
            report = await _tick(orchestrator)
            print(json.dumps(report, indent=2))
            return 1 if report and report["errors"] else 0

        interval = settings.sync.interval_minutes * 60
        logger.info("sync_loop_started", interval_seconds=interval)
        while True:
            await _tick(orchestrator)
            await asyncio.sleep(interval)
    finally:
        await ledger.aclose()
        await store.close()


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="ledgersync",
        description="Mirror transfers between a personal ledger and organization ledgers",
    )
    parser.add_argument("--once", action="store_true", help="Run a single cycle and exit")
    args = parser.parse_args(argv)

    try:
        return asyncio.run(run(args.once))
    except KeyboardInterrupt:
        logger.info("sync_loop_stopped")
        return 0


if __name__ == "__main__":
    sys.exit(main())
