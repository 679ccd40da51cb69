"""
Tests for mirror tags, sync directions and transfer matching
"""

import pytest
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

from ledgersync.engine import (
    DedupPolicy,
    company_directions,
    loan_directions,
    mirror_tag,
    rank_transfer_matches,
)
from ledgersync.models.ledger import LedgerTransaction
from ledgersync.models.sync import AccountLink, CompanyAccountLink, SourceBudget

from tests.conftest import ACME, GLOBEX, PERSONAL


class TestMirrorTag:
    """Tests for idempotency tags."""

    def test_deterministic(self):
        """Test the same source always gives the same tag."""
        assert mirror_tag("abc-123", "LOAN", "P") == mirror_tag("abc-123", "LOAN", "P")

    def test_shape_and_length(self):
        """Test prefix, discriminator and the 36 character cap."""
        tag = mirror_tag("abc-123", "LOAN", "P")
        assert tag.startswith("LOAN:P:")
        assert len(tag) <= 36

    def test_direction_changes_tag(self):
        """Test the discriminator keeps directions apart."""
        assert mirror_tag("abc", "LOAN", "P") != mirror_tag("abc", "LOAN", "C")
        assert mirror_tag("abc", "LOAN", "P") != mirror_tag("abd", "LOAN", "P")

    def test_recreation_tag_differs(self):
        """Test recreation tags are unique per time and differ from the original."""
        now = datetime(2026, 2, 1, tzinfo=timezone.utc)
        original = mirror_tag("abc", "LOAN", "P")
        first = mirror_tag("abc", "LOAN", "P", recreated_at=now)
        second = mirror_tag("abc", "LOAN", "P", recreated_at=now + timedelta(seconds=1))
        assert first != original
        assert first != second
        assert len(first) <= 36
        assert first.startswith("LOAN:P:")

    def test_custom_limit(self):
        """Test a shorter identifier limit is honored."""
        assert len(mirror_tag("abc", "LOAN", "P", max_length=20)) == 20


class TestDirections:
    """Tests for building sync directions from links."""

    def test_loan_directions(self):
        """Test both loan directions and their slots."""
        links = [
            AccountLink(company_budget_id=ACME.id, company_name="Acme",
                        personal_account_id="p1", company_account_id="c1"),
            AccountLink(company_budget_id=GLOBEX.id, company_name="Globex",
                        personal_account_id="p2", company_account_id="c2"),
            AccountLink(company_budget_id=ACME.id, company_name="Acme",
                        personal_account_id="p3", company_account_id="c3", active=False),
        ]
        outbound, inbound = loan_directions(PERSONAL, ACME, links, "LOAN")

        assert outbound.source is PERSONAL
        assert outbound.source_slot is SourceBudget.PERSONAL
        assert outbound.tag_code == "P"
        assert outbound.stream == "loan:acme"
        assert [p.source_account_id for p in outbound.pairs] == ["p1"]

        assert inbound.source is ACME
        assert inbound.target_slot is SourceBudget.PERSONAL
        assert inbound.tag_code == "C"
        assert inbound.stream == "loan:personal"
        assert inbound.pair_for_source_account("c1").target_account_id == "p1"
        assert inbound.pair_for_target_account("p1").source_account_id == "c1"
        assert inbound.personal_budget is PERSONAL
        assert inbound.company_budget is ACME

    def test_company_directions(self):
        """Test the first ledger of a company link takes the personal slot."""
        links = [CompanyAccountLink(
            budget_id_1=ACME.id, account_id_1="a", name_1="Due from Globex",
            budget_id_2=GLOBEX.id, account_id_2="g", name_2="Due to Acme",
        )]
        forward, backward = company_directions(ACME, GLOBEX, links, "LINK")

        assert forward.personal_budget is ACME
        assert backward.personal_budget is ACME
        assert forward.tag_code == "A"
        assert backward.tag_code == "B"
        assert backward.stream == "link:acme"
        assert backward.pairs[0].source_account_id == "g"


def candidate(tx_id, amount, day, deleted=False):
    return LedgerTransaction(id=tx_id, date=day, amount=amount, account_id="c1", deleted=deleted)


class TestTransferMatching:
    """Tests for the dedup tolerance."""

    policy = DedupPolicy()

    def test_amount_tolerance(self):
        """Test relative slack with an absolute floor, same sign only."""
        assert self.policy.amount_matches(-10500, -10300)
        assert not self.policy.amount_matches(-10500, -10000)
        assert self.policy.amount_matches(-100, -110)
        assert not self.policy.amount_matches(-10500, 10500)

    def test_ranked_by_date_then_amount(self):
        """Test the closest candidate wins."""
        expected_day = date(2026, 1, 15)
        matches = rank_transfer_matches(-10500, expected_day, [
            candidate("far", -10500, date(2026, 1, 17)),
            candidate("off", -10400, date(2026, 1, 15)),
            candidate("exact", -10500, date(2026, 1, 15)),
            candidate("late", -10500, date(2026, 1, 18)),
            candidate("gone", -10500, date(2026, 1, 15), deleted=True),
        ], self.policy)
        assert [m.id for m in matches] == ["exact", "off", "far"]

    def test_policy_from_settings(self, sync_settings):
        """Test tolerances are configurable."""
        settings = sync_settings.model_copy(update={
            "dedup_max_days": 0, "dedup_amount_tolerance": Decimal("0"), "dedup_min_amount_tolerance": 0,
        })
        policy = DedupPolicy.from_settings(settings)
        assert not policy.date_matches(date(2026, 1, 15), date(2026, 1, 16))
        assert not policy.amount_matches(-10500, -10490)
        assert policy.amount_matches(-10500, -10500)
        assert policy.window_start(date(2026, 1, 15)) == date(2026, 1, 15)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
