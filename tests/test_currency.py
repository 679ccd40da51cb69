"""
Tests for the Rate Table and conversion math
"""

import pytest
from datetime import date
from decimal import Decimal

from ledgersync.errors import RateUnavailableError
from ledgersync.models.sync import ExchangeRate
from ledgersync.services.currency import RateTable, apply_rate, month_of


async def save(store, month, base, quote, rate):
    await store.save_exchange_rate(ExchangeRate(
        month=month, base_currency=base, quote_currency=quote, rate=Decimal(rate),
    ))


class TestApplyRate:
    """Tests for milliunit conversion."""

    def test_multiplies(self):
        """Test the reference conversion."""
        assert apply_rate(10000, Decimal("1.05")) == 10500

    def test_inverse_divides(self):
        """Test the inverse direction."""
        assert apply_rate(-10500, Decimal("1.05"), inverse=True) == -10000

    def test_rounds_to_cents_half_up(self):
        """Test results are whole cents, halves away from zero."""
        assert apply_rate(1005, Decimal("1.5")) == 1510
        assert apply_rate(1234, Decimal("1")) == 1230

    def test_sign_symmetric(self):
        """Test converting -x gives exactly the negation of converting x."""
        for amount in (1, 5, 2500, 33333, 123455):
            rate = Decimal("1.0873")
            assert apply_rate(-amount, rate) == -apply_rate(amount, rate)
            assert apply_rate(-amount, rate, inverse=True) == -apply_rate(amount, rate, inverse=True)

    def test_month_key(self):
        """Test month formatting."""
        assert month_of(date(2026, 3, 9)) == "2026-03"


class TestRateTable:
    """Tests for rate lookup."""

    async def test_identity(self, store):
        """Test same currency needs no stored rate."""
        assert await RateTable(store).get_rate("2026-01", "usd", "USD") == Decimal(1)

    async def test_direct_rate(self, store):
        """Test a stored pair is returned as is."""
        await save(store, "2026-01", "EUR", "USD", "1.05")
        assert await RateTable(store).get_rate("2026-01", "EUR", "USD") == Decimal("1.05")

    async def test_inverse_rate(self, store):
        """Test the reverse pair is inverted."""
        await save(store, "2026-01", "USD", "EUR", "0.8")
        assert await RateTable(store).get_rate("2026-01", "EUR", "USD") == Decimal("1.25")

    async def test_cross_rate_through_pivot(self, store):
        """Test two legs through a pivot currency."""
        await save(store, "2026-01", "GBP", "EUR", "1.2")
        await save(store, "2026-01", "EUR", "USD", "1.05")
        rate = await RateTable(store).get_rate("2026-01", "GBP", "USD")
        assert rate == Decimal("1.26")

    async def test_rates_are_per_month(self, store):
        """Test another month's rate is never used."""
        await save(store, "2026-01", "EUR", "USD", "1.05")
        with pytest.raises(RateUnavailableError) as exc:
            await RateTable(store).rate_for(date(2026, 2, 1), "EUR", "USD")
        assert exc.value.month == "2026-02"
        assert exc.value.base_currency == "EUR"


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
