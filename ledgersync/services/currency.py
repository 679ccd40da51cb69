"""
Rate Table

Monthly conversion multipliers, read from the mapping store.

DESIGN DECISION: Conversion is done in Decimal and rounded half-up to two
decimal places (10 milliunits). Rounding is symmetric around zero, so a
mirror of -x is always the negation of a mirror of x.
"""

from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

import structlog

from ledgersync.errors import RateUnavailableError
from ledgersync.services.storage import MappingStoreInterface


logger = structlog.get_logger(__name__)

MILLIUNITS_PER_CENT = 10
RATE_PRECISION = Decimal("0.0000000001")
DEFAULT_PIVOT_CURRENCIES = ("EUR", "USD")


def month_of(day: date) -> str:
    """YYYY-MM key used for rate lookups."""
    return day.strftime("%Y-%m")


def apply_rate(amount: int, rate: Decimal, inverse: bool = False) -> int:
    """
    Convert a milliunit amount with a multiplier.

    Args:
        amount: Signed amount in milliunits
        rate: Units of target per unit of source (or the reverse if inverse)
        inverse: Divide by the rate instead of multiplying

    Returns:
        Converted amount in milliunits, rounded to whole cents
    """
    value = Decimal(amount) / rate if inverse else Decimal(amount) * rate
    cents = (value / MILLIUNITS_PER_CENT).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return int(cents) * MILLIUNITS_PER_CENT


class RateTable:
    """
    Looks up the multiplier for a month and currency pair.

    Lookup order: same currency, stored pair, stored inverse pair, then a
    cross rate through a pivot currency.
    """

    def __init__(
        self,
        store: MappingStoreInterface,
        pivot_currencies: tuple[str, ...] = DEFAULT_PIVOT_CURRENCIES,
    ):
        self._store = store
        self._pivots = tuple(c.upper() for c in pivot_currencies)

    async def _pair(self, month: str, base: str, quote: str) -> Optional[Decimal]:
        rate = await self._store.get_exchange_rate(month, base, quote)
        if rate is not None:
            return Decimal(rate)
        inverse = await self._store.get_exchange_rate(month, quote, base)
        if inverse is not None:
            return (Decimal(1) / Decimal(inverse)).quantize(RATE_PRECISION)
        return None

    async def get_rate(self, month: str, base_currency: str, quote_currency: str) -> Decimal:
        """
        Get units of quote per unit of base for a month.

        Raises:
            RateUnavailableError: If neither a direct nor a cross rate exists
        """
        base, quote = base_currency.upper(), quote_currency.upper()
        if base == quote:
            return Decimal(1)

        rate = await self._pair(month, base, quote)
        if rate is not None:
            return rate

        for pivot in self._pivots:
            if pivot in (base, quote):
                continue
            first = await self._pair(month, base, pivot)
            second = await self._pair(month, pivot, quote) if first is not None else None
            if first is not None and second is not None:
                cross = (first * second).quantize(RATE_PRECISION)
                logger.debug(
                    "cross_rate_used",
                    month=month,
                    base=base,
                    quote=quote,
                    pivot=pivot,
                    rate=str(cross),
                )
                return cross

        logger.warning("exchange_rate_missing", month=month, base=base, quote=quote)
        raise RateUnavailableError(month, base, quote)

    async def rate_for(self, day: date, base_currency: str, quote_currency: str) -> Decimal:
        """Rate for the month containing `day`."""
        return await self.get_rate(month_of(day), base_currency, quote_currency)
