"""
Tests for Ledger Sync models

Test strategy:
1. Unit tests for individual components (models, builders)
2. Integration tests for flows live in test_engine / test_orchestrator
3. No real API calls in tests (use fakes and mock transports)
"""

import pytest
from datetime import date
from decimal import Decimal
from uuid import uuid4

from ledgersync.config import BudgetConfig
from ledgersync.models.audit import (
    CycleReport,
    Decision,
    DecisionAction,
    SubRunStats,
    SyncAction,
    SyncLogEntry,
    SyncLogEntryBuilder,
)
from ledgersync.models.ledger import (
    LedgerTransaction,
    NewTransaction,
    TransactionUpdate,
)
from ledgersync.models.sync import (
    CompanyAccountLink,
    ExchangeRate,
    LinkedTransaction,
    SourceBudget,
    SyncStatus,
    SyncWatermark,
    TransactionMapping,
)


def make_transaction(**overrides) -> LedgerTransaction:
    values = dict(
        id="tx-1",
        date=date(2026, 1, 15),
        amount=10000,
        account_id="acc-1",
        account_name="Owner Loan",
        payee_name="Acme",
    )
    values.update(overrides)
    return LedgerTransaction(**values)


def make_mapping(**overrides) -> TransactionMapping:
    values = dict(
        personal_budget_id="personal",
        company_budget_id="acme",
        personal_tx_id="p-1",
        company_tx_id="c-1",
        personal_amount=10000,
        company_amount=-10500,
        exchange_rate=Decimal("1.05"),
        transaction_date=date(2026, 1, 15),
        source_budget=SourceBudget.PERSONAL,
    )
    values.update(overrides)
    return TransactionMapping(**values)


class TestLedgerModels:
    """Tests for ledger-side Pydantic models."""

    def test_transaction_ignores_unknown_api_fields(self):
        """Test extra fields from the API payload are dropped."""
        tx = LedgerTransaction.model_validate({
            "id": "t", "date": "2026-01-15", "amount": -2500, "account_id": "a",
            "flag_color": "red", "subtransactions": [],
        })
        assert tx.amount == -2500
        assert tx.month == "2026-01"

    def test_tag_prefix_detection(self):
        """Test only the given namespaces count as mirror tags."""
        assert make_transaction(import_id="LOAN:P:abc").has_tag_prefix(("LOAN", "LINK"))
        assert make_transaction(import_id="LINK:A:abc").has_tag_prefix(("LOAN", "LINK"))
        assert not make_transaction(import_id="YNAB:-2500:2026-01-15:1").has_tag_prefix(("LOAN", "LINK"))
        assert not make_transaction(import_id="LOANS:x").has_tag_prefix(("LOAN",))
        assert not make_transaction().has_tag_prefix(("LOAN",))

    def test_new_transaction_truncates_memo(self):
        """Test long memos are cut to the API limit in the payload."""
        new = NewTransaction(
            account_id="a", date=date(2026, 1, 1), amount=1000,
            memo="x" * 600, import_id="LOAN:P:abc",
        )
        payload = new.to_payload()
        assert len(payload["memo"]) == 500
        assert payload["date"] == "2026-01-01"
        assert payload["cleared"] == "cleared"

    def test_new_transaction_rejects_long_import_id(self):
        """Test import ids longer than 36 characters are rejected."""
        with pytest.raises(ValueError):
            NewTransaction(account_id="a", date=date(2026, 1, 1), amount=1, import_id="x" * 37)

    def test_update_payload_omits_unset_fields(self):
        """Test only set fields are sent."""
        assert TransactionUpdate(amount=-500).to_payload() == {"amount": -500}


class TestSyncModels:
    """Tests for sync records."""

    def test_mapping_requires_offsetting_amounts(self):
        """Test same-sign amounts are rejected."""
        with pytest.raises(ValueError):
            make_mapping(company_amount=10500)

    def test_mapping_rejects_non_positive_rate(self):
        """Test the rate must be positive."""
        with pytest.raises(ValueError):
            make_mapping(exchange_rate=Decimal("0"))

    def test_mapping_slot_accessors(self):
        """Test slot helpers read the right column."""
        mapping = make_mapping()
        assert mapping.tx_id_for(SourceBudget.COMPANY) == "c-1"
        assert mapping.amount_for(SourceBudget.PERSONAL) == 10000
        assert mapping.budget_for(SourceBudget.COMPANY) == "acme"
        assert mapping.joins("acme", "personal")
        assert mapping.is_active
        assert SourceBudget.PERSONAL.other is SourceBudget.COMPANY

    def test_retired_mapping_is_not_active(self):
        """Test deleted status."""
        assert not make_mapping(sync_status=SyncStatus.DELETED).is_active

    def test_company_link_needs_two_budgets(self):
        """Test a company link can't join a budget to itself."""
        with pytest.raises(ValueError):
            CompanyAccountLink(budget_id_1="acme", account_id_1="a", budget_id_2="acme", account_id_2="b")

    def test_company_link_orientation(self):
        """Test flipping a company link swaps both sides and keeps its id."""
        link = CompanyAccountLink(
            budget_id_1="globex", account_id_1="g", name_1="Due to Acme",
            budget_id_2="acme", account_id_2="a", name_2="Due from Globex",
        )
        flipped = link.oriented("acme")
        assert (flipped.budget_id_1, flipped.account_id_1, flipped.name_1) == ("acme", "a", "Due from Globex")
        assert (flipped.budget_id_2, flipped.account_id_2, flipped.name_2) == ("globex", "g", "Due to Acme")
        assert flipped.id == link.id
        assert link.oriented("globex") is link

    def test_linked_transaction_sides(self):
        """Test linked transaction validation and lookup."""
        link = LinkedTransaction(
            budget_id_a="personal", tx_id_a="p-1", budget_id_b="acme", tx_id_b="c-9",
            amount=10000, transaction_date=date(2026, 1, 15),
        )
        assert link.involves("c-9")
        assert not link.involves("c-1")
        with pytest.raises(ValueError):
            LinkedTransaction(
                budget_id_a="personal", tx_id_a="x", budget_id_b="acme", tx_id_b="x",
                amount=1, transaction_date=date(2026, 1, 15),
            )

    def test_exchange_rate_month_format(self):
        """Test months must be YYYY-MM and currencies are normalized."""
        rate = ExchangeRate(month="2026-01", base_currency="eur", quote_currency="usd", rate=Decimal("1.05"))
        assert rate.base_currency == "EUR"
        with pytest.raises(ValueError):
            ExchangeRate(month="2026-13", base_currency="EUR", quote_currency="USD", rate=Decimal("1"))

    def test_watermark_defaults(self):
        """Test a fresh watermark has no cursor."""
        watermark = SyncWatermark(budget_id="personal", stream="loan:acme")
        assert watermark.last_watermark is None
        assert watermark.total_synced == 0

    def test_budget_currency_is_uppercased(self):
        """Test budget currency normalization."""
        assert BudgetConfig(id="b", name="B", currency="eur").currency == "EUR"


class TestAuditModels:
    """Tests for decision-log models."""

    def test_decision_entry_captures_details(self):
        """Test the builder copies transaction context."""
        run_id = uuid4()
        entry = SyncLogEntryBuilder.decision(
            run_id=run_id,
            budget_id="personal",
            budget_name="Personal",
            transaction=make_transaction(),
            action=SyncAction.CREATE,
            reason="mirror_created",
            mirror_transaction_id="c-1",
            converted_amount=-10500,
            rate_used=Decimal("1.05"),
            link_name="Acme LLC",
        )
        assert entry.run_id == run_id
        assert entry.transaction_id == "tx-1"
        assert entry.details.payee == "Acme"
        assert entry.details.link == "Acme LLC"
        log = entry.to_log_dict()
        assert log["action"] == "create"
        assert log["details"]["rate_used"] == "1.05"

    def test_failure_entry_truncates_message(self):
        """Test error messages are capped."""
        entry = SyncLogEntryBuilder.transaction_failed(
            run_id=uuid4(),
            budget_id="personal",
            budget_name="Personal",
            transaction=make_transaction(),
            error_message="x" * 5000,
        )
        assert entry.action == SyncAction.ERROR
        assert len(entry.error_message) == 2000

    def test_run_failed_entry_has_no_transaction(self):
        """Test sub-run failures are logged without a transaction."""
        entry = SyncLogEntryBuilder.run_failed(uuid4(), "acme", "Acme", "boom", stream="loan:personal")
        assert entry.transaction_id is None
        assert "loan:personal" in entry.details.reason

    def test_decision_from_log_entry(self):
        """Test report lines map actions to their past-tense form."""
        for action, expected in [
            (SyncAction.CREATE, DecisionAction.CREATED),
            (SyncAction.UPDATE, DecisionAction.UPDATED),
            (SyncAction.DELETE, DecisionAction.DELETED),
            (SyncAction.SKIP, DecisionAction.SKIPPED),
            (SyncAction.ERROR, DecisionAction.ERROR),
        ]:
            entry = SyncLogEntry(run_id=uuid4(), action=action)
            assert Decision.from_log_entry(entry).action == expected

    def test_stats_add_up(self):
        """Test sub-run stats aggregation."""
        total = SubRunStats()
        total.add(SubRunStats(created=1, processed=3, skipped=2))
        total.add(SubRunStats(deleted=1, errors=1, processed=2))
        assert total.model_dump() == {
            "created": 1, "updated": 0, "deleted": 1, "skipped": 2, "errors": 1, "processed": 5,
        }

    def test_report_summary(self):
        """Test the report summary is JSON friendly."""
        report = CycleReport(run_id=uuid4(), created=2, errors=1)
        summary = report.to_summary()
        assert summary["created"] == 2
        assert summary["errors"] == 1
        assert isinstance(summary["run_id"], str)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
