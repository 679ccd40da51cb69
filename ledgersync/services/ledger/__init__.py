"""Ledger client package."""

from ledgersync.services.ledger.interface import (
    DuplicateImportError,
    LedgerClientInterface,
    LedgerError,
    LedgerUnavailableError,
    TransactionNotFoundError,
)
from ledgersync.services.ledger.ynab import YnabLedgerClient

__all__ = [
    "DuplicateImportError",
    "LedgerClientInterface",
    "LedgerError",
    "LedgerUnavailableError",
    "TransactionNotFoundError",
    "YnabLedgerClient",
]
