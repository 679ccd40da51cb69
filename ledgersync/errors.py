"""
Sync Error Taxonomy

Where a failure is caught decides how much work it aborts:
- ConfigurationError: the whole sub-run (direction)
- RateUnavailableError, LedgerWriteFailure: one transaction
- StoreFailure: one transaction, or the whole sub-run when the watermark
  itself can't be written

An idempotent conflict on create is not an error and has no class here.
"""

from typing import Optional


class SyncError(Exception):
    """Base exception for reconciliation failures."""
    pass


class ConfigurationError(SyncError):
    """A link, budget or mapping the sync relies on is missing or inconsistent."""
    pass


class RateUnavailableError(SyncError):
    """No conversion rate for the needed month and currency pair."""

    def __init__(self, month: str, base_currency: str, quote_currency: str):
        super().__init__(f"No {base_currency}->{quote_currency} rate for {month}")
        self.month = month
        self.base_currency = base_currency
        self.quote_currency = quote_currency


class LedgerWriteFailure(SyncError):
    """A create/update/delete on a ledger was rejected or could not be sent."""

    def __init__(self, message: str, mirror_transaction_id: Optional[str] = None):
        super().__init__(message)
        self.mirror_transaction_id = mirror_transaction_id


class StoreFailure(SyncError):
    """The mapping store could not be read or written."""
    pass
