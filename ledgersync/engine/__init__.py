"""
Reconciliation Engine Package

One generic engine for both link sets. Directions describe what to sync,
the engine decides what to do about each transaction.
"""

from ledgersync.engine.classify import (
    Classification,
    Deleted,
    Ignored,
    MirrorDrift,
    NewCandidate,
    SourceDrift,
    classify,
)
from ledgersync.engine.dedup import DedupPolicy, rank_transfer_matches
from ledgersync.engine.directions import (
    AccountPair,
    SyncDirection,
    company_directions,
    loan_directions,
)
from ledgersync.engine.reconciler import HandlerResult, ReconciliationEngine
from ledgersync.engine.tags import mirror_tag

__all__ = [
    # Directions
    "AccountPair",
    "SyncDirection",
    "company_directions",
    "loan_directions",
    # Classification
    "Classification",
    "Deleted",
    "Ignored",
    "MirrorDrift",
    "NewCandidate",
    "SourceDrift",
    "classify",
    # Dedup
    "DedupPolicy",
    "rank_transfer_matches",
    # Engine
    "HandlerResult",
    "ReconciliationEngine",
    "mirror_tag",
]
