"""
Audit Models for Ledger Sync

Every decision the reconciliation engine takes is written to an append-only
decision log, grouped by run id. The cycle report shown to users is built
back from those entries, so what the user sees is exactly what was recorded.

DESIGN DECISION: Decision logs are append-only. We never delete or modify them.
"""

import datetime as dt
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from ledgersync.models.ledger import LedgerTransaction
from ledgersync.models.sync import utc_now


class SyncAction(str, Enum):
    """What the engine did about one transaction."""
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    SKIP = "skip"
    ERROR = "error"


class DecisionAction(str, Enum):
    """Report-facing form of SyncAction."""
    CREATED = "created"
    UPDATED = "updated"
    SKIPPED = "skipped"
    DELETED = "deleted"
    ERROR = "error"

    @classmethod
    def from_sync_action(cls, action: SyncAction) -> "DecisionAction":
        return _ACTION_TO_DECISION[action]


_ACTION_TO_DECISION = {
    SyncAction.CREATE: DecisionAction.CREATED,
    SyncAction.UPDATE: DecisionAction.UPDATED,
    SyncAction.SKIP: DecisionAction.SKIPPED,
    SyncAction.DELETE: DecisionAction.DELETED,
    SyncAction.ERROR: DecisionAction.ERROR,
}


class DecisionDetails(BaseModel):
    """Context captured with a decision."""

    date: Optional[dt.date] = None
    amount: Optional[int] = None
    payee: Optional[str] = None
    account: Optional[str] = None
    budget: Optional[str] = None
    converted_amount: Optional[int] = None
    rate_used: Optional[Decimal] = None
    link: Optional[str] = Field(default=None, description="Name of the account link involved")
    reason: Optional[str] = None


class SyncLogEntry(BaseModel):
    """
    A single decision-log entry.

    This is the core unit of our audit trail.
    Every decision the engine takes creates one of these.
    """

    id: UUID = Field(default_factory=uuid4)
    run_id: UUID
    budget_id: Optional[str] = None
    action: SyncAction
    transaction_id: Optional[str] = Field(default=None, description="Source transaction")
    mirror_transaction_id: Optional[str] = None
    details: DecisionDetails = Field(default_factory=DecisionDetails)
    error_message: Optional[str] = Field(default=None, max_length=2000)
    created_at: datetime = Field(default_factory=utc_now)

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "entry_id": str(self.id),
            "run_id": str(self.run_id),
            "budget_id": self.budget_id,
            "action": self.action.value,
            "transaction_id": self.transaction_id,
            "mirror_transaction_id": self.mirror_transaction_id,
            "details": self.details.model_dump(mode="json", exclude_none=True),
            "error_message": self.error_message,
            "created_at": self.created_at.isoformat(),
        }


class SyncLogEntryBuilder:
    """
    Helper class to build log entries with common patterns.

    Usage:
        entry = SyncLogEntryBuilder.decision(run_id, budget_id, budget_name, tx, ...)
        entry = SyncLogEntryBuilder.run_failed(run_id, budget_id, error)
    """

    @staticmethod
    def _details(
        transaction: LedgerTransaction,
        budget_name: Optional[str],
        link_name: Optional[str] = None,
        reason: Optional[str] = None,
        converted_amount: Optional[int] = None,
        rate_used: Optional[Decimal] = None,
    ) -> DecisionDetails:
        return DecisionDetails(
            date=transaction.date,
            amount=transaction.amount,
            payee=transaction.payee_name,
            account=transaction.account_name,
            budget=budget_name,
            converted_amount=converted_amount,
            rate_used=rate_used,
            link=link_name,
            reason=reason,
        )

    @staticmethod
    def decision(
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
    ) -> SyncLogEntry:
        return SyncLogEntry(
            run_id=run_id,
            budget_id=budget_id,
            action=action,
            transaction_id=transaction.id,
            mirror_transaction_id=mirror_transaction_id,
            details=SyncLogEntryBuilder._details(
                transaction,
                budget_name,
                link_name=link_name,
                reason=reason,
                converted_amount=converted_amount,
                rate_used=rate_used,
            ),
        )

    @staticmethod
    def transaction_failed(
        run_id: UUID,
        budget_id: str,
        budget_name: Optional[str],
        transaction: LedgerTransaction,
        error_message: str,
        reason: Optional[str] = None,
        mirror_transaction_id: Optional[str] = None,
    ) -> SyncLogEntry:
        return SyncLogEntry(
            run_id=run_id,
            budget_id=budget_id,
            action=SyncAction.ERROR,
            transaction_id=transaction.id,
            mirror_transaction_id=mirror_transaction_id,
            details=SyncLogEntryBuilder._details(transaction, budget_name, reason=reason),
            error_message=error_message[:2000],
        )

    @staticmethod
    def run_failed(
        run_id: UUID,
        budget_id: Optional[str],
        budget_name: Optional[str],
        error_message: str,
        stream: Optional[str] = None,
    ) -> SyncLogEntry:
        return SyncLogEntry(
            run_id=run_id,
            budget_id=budget_id,
            action=SyncAction.ERROR,
            details=DecisionDetails(
                budget=budget_name,
                reason=f"sub-run failed: {stream}" if stream else "sub-run failed",
            ),
            error_message=error_message[:2000],
        )


class Decision(BaseModel):
    """One line of the cycle report."""

    transaction_id: Optional[str] = None
    date: Optional[dt.date] = None
    amount: Optional[int] = None
    payee: Optional[str] = None
    account: Optional[str] = None
    budget: Optional[str] = None
    action: DecisionAction
    mirror_transaction_id: Optional[str] = None
    converted_amount: Optional[int] = None
    rate_used: Optional[Decimal] = None
    reason: Optional[str] = None
    error_message: Optional[str] = None

    @classmethod
    def from_log_entry(cls, entry: SyncLogEntry) -> "Decision":
        details = entry.details
        return cls(
            transaction_id=entry.transaction_id,
            date=details.date,
            amount=details.amount,
            payee=details.payee,
            account=details.account,
            budget=details.budget,
            action=DecisionAction.from_sync_action(entry.action),
            mirror_transaction_id=entry.mirror_transaction_id,
            converted_amount=details.converted_amount,
            rate_used=details.rate_used,
            reason=details.reason,
            error_message=entry.error_message,
        )


class SubRunStats(BaseModel):
    """Counters for one (source ledger, direction) sub-run."""

    created: int = 0
    updated: int = 0
    deleted: int = 0
    skipped: int = 0
    errors: int = 0
    processed: int = 0

    def add(self, other: "SubRunStats") -> None:
        self.created += other.created
        self.updated += other.updated
        self.deleted += other.deleted
        self.skipped += other.skipped
        self.errors += other.errors
        self.processed += other.processed


class CycleReport(BaseModel):
    """Result of one orchestrator cycle."""

    run_id: UUID
    started_at: datetime = Field(default_factory=utc_now)
    finished_at: Optional[datetime] = None
    created: int = 0
    updated: int = 0
    deleted: int = 0
    skipped: int = 0
    errors: int = 0
    processed: int = 0
    transactions: list[Decision] = Field(default_factory=list)

    def to_summary(self) -> dict[str, Any]:
        return {
            "run_id": str(self.run_id),
            "created": self.created,
            "updated": self.updated,
            "deleted": self.deleted,
            "skipped": self.skipped,
            "errors": self.errors,
            "processed": self.processed,
        }
