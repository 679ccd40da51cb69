"""
Tests for the decision logger
"""

import pytest
from datetime import date
from uuid import uuid4

from ledgersync.audit import DecisionLogger, create_run_id
from ledgersync.models.audit import SyncAction, SyncLogEntry
from ledgersync.models.ledger import LedgerTransaction
from ledgersync.services.storage import InMemoryMappingStore, StorageError


class BrokenStore(InMemoryMappingStore):
    async def append_log_entry(self, entry: SyncLogEntry) -> bool:
        raise StorageError("disk full")


class TestDecisionLogger:
    """Tests for logging decisions."""

    async def test_decisions_are_persisted_per_run(self, store):
        """Test entries land in the store under their run id."""
        logger = DecisionLogger(store)
        run_id = create_run_id()
        tx = LedgerTransaction(id="p-1", date=date(2026, 1, 15), amount=10000, account_id="a")

        await logger.log_decision(run_id, "personal", "Personal", tx, SyncAction.CREATE, "mirror_created")
        await logger.log_transaction_failed(run_id, "personal", "Personal", tx, "boom")
        await logger.log_run_failed(uuid4(), "acme", "Acme", "unreachable")

        entries = await store.get_log_entries(run_id)
        assert [e.action for e in entries] == [SyncAction.CREATE, SyncAction.ERROR]
        assert entries[1].error_message == "boom"

    async def test_storage_failure_is_swallowed(self):
        """Test a failing store never breaks the sync run."""
        logger = DecisionLogger(BrokenStore())
        assert await logger.log(SyncLogEntry(run_id=uuid4(), action=SyncAction.SKIP)) is False

    async def test_local_only(self):
        """Test logging without a store succeeds."""
        assert await DecisionLogger().log(SyncLogEntry(run_id=uuid4(), action=SyncAction.SKIP))


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
