"""Services package."""

from ledgersync.services.currency import RateTable, apply_rate, month_of
from ledgersync.services.ledger import (
    DuplicateImportError,
    LedgerClientInterface,
    LedgerError,
    LedgerUnavailableError,
    TransactionNotFoundError,
    YnabLedgerClient,
)
from ledgersync.services.storage import (
    ConnectionError,
    DuplicateError,
    InMemoryMappingStore,
    MappingStoreInterface,
    NotFoundError,
    SqlMappingStore,
    StorageError,
)

__all__ = [
    # Currency
    "RateTable",
    "apply_rate",
    "month_of",
    # Ledger client
    "DuplicateImportError",
    "LedgerClientInterface",
    "LedgerError",
    "LedgerUnavailableError",
    "TransactionNotFoundError",
    "YnabLedgerClient",
    # Storage services
    "ConnectionError",
    "DuplicateError",
    "InMemoryMappingStore",
    "MappingStoreInterface",
    "NotFoundError",
    "SqlMappingStore",
    "StorageError",
]
