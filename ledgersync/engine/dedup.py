"""
Transfer matching.

Before creating a mirror, the target account is searched for a genuine
entry that already represents the same transfer (a bank transfer that
cleared on both sides). Matching is a tolerance heuristic on date and amount.
"""

from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal

from ledgersync.config import SyncSettings
from ledgersync.models.ledger import LedgerTransaction


@dataclass(frozen=True)
class DedupPolicy:
    max_days: int = 2
    amount_tolerance: Decimal = Decimal("0.02")
    min_amount_tolerance: int = 10
    enabled: bool = True

    @classmethod
    def from_settings(cls, settings: SyncSettings) -> "DedupPolicy":
        return cls(
            max_days=settings.dedup_max_days,
            amount_tolerance=settings.dedup_amount_tolerance,
            min_amount_tolerance=settings.dedup_min_amount_tolerance,
            enabled=settings.dedup_enabled,
        )

    def window_start(self, day: date) -> date:
        return day - timedelta(days=self.max_days)

    def date_matches(self, expected: date, actual: date) -> bool:
        return abs((actual - expected).days) <= self.max_days

    def amount_matches(self, expected: int, actual: int) -> bool:
        """Same sign, and within the relative slack (never below the absolute floor)."""
        if expected == 0 or actual == 0 or (expected > 0) != (actual > 0):
            return False
        slack = max(abs(expected) * self.amount_tolerance, Decimal(self.min_amount_tolerance))
        return abs(actual - expected) <= slack


def rank_transfer_matches(
    expected_amount: int,
    expected_date: date,
    candidates: list[LedgerTransaction],
    policy: DedupPolicy,
) -> list[LedgerTransaction]:
    """
    Candidates within tolerance of the expected mirror, best match first.

    Closer dates win, then closer amounts. Ties keep ledger order.
    """
    matches = [
        c for c in candidates
        if not c.deleted
        and policy.date_matches(expected_date, c.date)
        and policy.amount_matches(expected_amount, c.amount)
    ]
    return sorted(
        matches,
        key=lambda c: (abs((c.date - expected_date).days), abs(c.amount - expected_amount)),
    )
