"""
Decision Logger

DESIGN DECISION: Every decision the engine takes is logged exactly once.
This provides:
1. Complete traceability of what happened to each transaction
2. The raw material for the cycle report
3. Debugging capability when ledgers disagree

The decision logger:
- Is async to not block main flow
- Gracefully handles failures (doesn't crash a sync run if logging fails)
- Groups entries by run id
"""

import logging
from decimal import Decimal
from typing import Optional
from uuid import UUID, uuid4

import structlog

from ledgersync.models.audit import SyncAction, SyncLogEntry, SyncLogEntryBuilder
from ledgersync.models.ledger import LedgerTransaction
from ledgersync.services.storage import MappingStoreInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


def configure_logging(level: str = "INFO") -> None:
    """Route structured logs to stderr at the given level."""
    logging.basicConfig(format="%(message)s", level=level.upper())
    logging.getLogger().setLevel(level.upper())


class DecisionLogger:
    """
    Central decision logging service.

    Logs entries both to:
    1. Structured local log (for debugging)
    2. The mapping store (for the cycle report and the dashboard)
    """

    def __init__(
        self,
        storage: Optional[MappingStoreInterface] = None,
    ):
        """
        Initialize decision logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger("ledgersync.decisions")

    async def log(self, entry: SyncLogEntry) -> bool:
        """
        Log a decision.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = entry.to_log_dict()

        if entry.action == SyncAction.ERROR:
            self._logger.error("sync_decision", **log_dict)
        else:
            self._logger.info("sync_decision", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_log_entry(entry)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "decision_storage_failed",
                    error=str(e),
                    entry_id=str(entry.id),
                )
                return False

        return True

    async def log_decision(
        self,
        run_id: UUID,
        budget_id: str,
        budget_name: Optional[str],
        transaction: LedgerTransaction,
        action: SyncAction,
        reason: str,
        mirror_transaction_id: Optional[str] = None,
        converted_amount: Optional[int] = None,
        rate_used: Optional[Decimal] = None,
        link_name: Optional[str] = None,
    ) -> None:
        """Log a completed create/update/delete/skip."""
        entry = SyncLogEntryBuilder.decision(
            run_id=run_id,
            budget_id=budget_id,
            budget_name=budget_name,
            transaction=transaction,
            action=action,
            reason=reason,
            mirror_transaction_id=mirror_transaction_id,
            converted_amount=converted_amount,
            rate_used=rate_used,
            link_name=link_name,
        )
        await self.log(entry)

    async def log_transaction_failed(
        self,
        run_id: UUID,
        budget_id: str,
        budget_name: Optional[str],
        transaction: LedgerTransaction,
        error_message: str,
        reason: Optional[str] = None,
        mirror_transaction_id: Optional[str] = None,
    ) -> None:
        """Log a transaction that could not be handled."""
        entry = SyncLogEntryBuilder.transaction_failed(
            run_id=run_id,
            budget_id=budget_id,
            budget_name=budget_name,
            transaction=transaction,
            error_message=error_message,
            reason=reason,
            mirror_transaction_id=mirror_transaction_id,
        )
        await self.log(entry)

    async def log_run_failed(
        self,
        run_id: UUID,
        budget_id: Optional[str],
        budget_name: Optional[str],
        error_message: str,
        stream: Optional[str] = None,
    ) -> None:
        """Log a sub-run that aborted."""
        entry = SyncLogEntryBuilder.run_failed(
            run_id=run_id,
            budget_id=budget_id,
            budget_name=budget_name,
            error_message=error_message,
            stream=stream,
        )
        await self.log(entry)


def create_run_id() -> UUID:
    """
    Create a new run ID for grouping the decisions of one cycle.

    Use this at the start of a cycle.
    Pass it through every sub-run.
    """
    return uuid4()
