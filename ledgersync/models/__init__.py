"""
Data Models Package

This package contains all Pydantic models used by Ledger Sync.
All data flowing between the ledgers, the store and the engine
must conform to these schemas.
"""

from ledgersync.models.ledger import (
    ClearedStatus,
    LedgerTransaction,
    NewTransaction,
    TransactionPage,
    TransactionUpdate,
)
from ledgersync.models.sync import (
    AccountLink,
    CompanyAccountLink,
    ExchangeRate,
    LinkedTransaction,
    LinkType,
    RunStatus,
    SourceBudget,
    SyncStatus,
    SyncWatermark,
    TransactionMapping,
)
from ledgersync.models.audit import (
    CycleReport,
    Decision,
    DecisionAction,
    DecisionDetails,
    SubRunStats,
    SyncAction,
    SyncLogEntry,
    SyncLogEntryBuilder,
)

__all__ = [
    # Ledger models
    "ClearedStatus",
    "LedgerTransaction",
    "NewTransaction",
    "TransactionPage",
    "TransactionUpdate",
    # Sync records
    "AccountLink",
    "CompanyAccountLink",
    "ExchangeRate",
    "LinkedTransaction",
    "LinkType",
    "RunStatus",
    "SourceBudget",
    "SyncStatus",
    "SyncWatermark",
    "TransactionMapping",
    # Audit models
    "CycleReport",
    "Decision",
    "DecisionAction",
    "DecisionDetails",
    "SubRunStats",
    "SyncAction",
    "SyncLogEntry",
    "SyncLogEntryBuilder",
]
