"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for the mapping store.
This allows us to:
1. Run against SQLite locally and Postgres in production
2. Use in-memory storage for testing
3. Keep the reconciliation engine decoupled from storage implementation

The interface is intentionally narrow - we're not building a general ORM.
Just the point lookups the engine needs, plus a few listings for the dashboard.

Writes must be visible to the next read in the same process.
"""

from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Optional
from uuid import UUID

from ledgersync.models.audit import SyncLogEntry
from ledgersync.models.sync import (
    AccountLink,
    CompanyAccountLink,
    ExchangeRate,
    LinkedTransaction,
    SyncStatus,
    SyncWatermark,
    TransactionMapping,
)


class MappingStoreInterface(ABC):
    """
    Abstract interface for sync state storage.

    Any storage implementation (SQL, in-memory, etc.)
    must implement these methods.
    """

    # --- Lifecycle ---

    async def create_tables(self) -> None:
        """Prepare the backend. Backends without a schema do nothing."""
        return None

    async def close(self) -> None:
        """Release connections."""
        return None

    # --- Watermarks ---

    @abstractmethod
    async def get_watermark(self, budget_id: str, stream: str) -> Optional[SyncWatermark]:
        """
        Get the cursor for one ledger stream.

        Args:
            budget_id: Ledger whose history is consumed
            stream: Counterpart the sub-run syncs towards

        Returns:
            The watermark if one was ever saved, None otherwise
        """
        pass

    @abstractmethod
    async def save_watermark(self, watermark: SyncWatermark) -> SyncWatermark:
        """
        Insert or replace the watermark for (budget_id, stream).

        Raises:
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def list_watermarks(self) -> list[SyncWatermark]:
        """List all watermarks."""
        pass

    # --- Transaction mappings ---

    @abstractmethod
    async def get_mapping(self, mapping_id: UUID) -> Optional[TransactionMapping]:
        """Get a mapping by its id, whatever its status."""
        pass

    @abstractmethod
    async def get_mapping_by_personal_tx(
        self,
        tx_id: str,
        active_only: bool = True,
    ) -> Optional[TransactionMapping]:
        """
        Find the mapping whose personal slot holds this transaction.

        Args:
            tx_id: Transaction id in the personal slot
            active_only: Ignore deleted/errored mappings

        Returns:
            The mapping if found, None otherwise
        """
        pass

    @abstractmethod
    async def get_mapping_by_company_tx(
        self,
        tx_id: str,
        active_only: bool = True,
    ) -> Optional[TransactionMapping]:
        """
        Find the mapping whose company slot holds this transaction.

        Args:
            tx_id: Transaction id in the company slot
            active_only: Ignore deleted/errored mappings

        Returns:
            The mapping if found, None otherwise
        """
        pass

    @abstractmethod
    async def create_mapping(self, mapping: TransactionMapping) -> TransactionMapping:
        """
        Persist a new mapping.

        Raises:
            DuplicateError: If either transaction id is already in an active mapping
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def update_mapping(self, mapping: TransactionMapping) -> TransactionMapping:
        """
        Replace a stored mapping (matched by id).

        Raises:
            NotFoundError: If the mapping doesn't exist
            DuplicateError: If the update would reference a transaction
                held by another active mapping
        """
        pass

    @abstractmethod
    async def list_mappings(
        self,
        status: Optional[SyncStatus] = None,
        limit: int = 1000,
    ) -> list[TransactionMapping]:
        """List mappings, newest first, optionally filtered by status."""
        pass

    # --- Linked transactions ---

    @abstractmethod
    async def create_linked_transaction(self, link: LinkedTransaction) -> LinkedTransaction:
        """
        Record that two entries are one transfer.

        Raises:
            DuplicateError: If either transaction is already linked
        """
        pass

    @abstractmethod
    async def get_linked_transaction(self, link_id: UUID) -> Optional[LinkedTransaction]:
        pass

    @abstractmethod
    async def update_linked_transaction(self, link: LinkedTransaction) -> LinkedTransaction:
        """
        Manual correction of a linked transaction.

        Raises:
            NotFoundError: If the link doesn't exist
        """
        pass

    @abstractmethod
    async def find_linked_transaction(self, tx_id: str) -> Optional[LinkedTransaction]:
        """
        Find the linked transaction involving this id, on either side.

        Returns:
            The link if the transaction is part of one, None otherwise
        """
        pass

    @abstractmethod
    async def list_linked_transactions(self, limit: int = 1000) -> list[LinkedTransaction]:
        pass

    @abstractmethod
    async def delete_linked_transaction(self, link_id: UUID) -> bool:
        """
        Remove a linked transaction (manual unlink).

        Returns:
            True if something was deleted
        """
        pass

    # --- Account links ---

    @abstractmethod
    async def get_account_links(self, active_only: bool = True) -> list[AccountLink]:
        pass

    @abstractmethod
    async def save_account_link(self, link: AccountLink) -> AccountLink:
        """Insert or replace an account link (matched by id)."""
        pass

    @abstractmethod
    async def get_company_account_links(self, active_only: bool = True) -> list[CompanyAccountLink]:
        pass

    @abstractmethod
    async def save_company_account_link(self, link: CompanyAccountLink) -> CompanyAccountLink:
        """Insert or replace a company account link (matched by id)."""
        pass

    # --- Exchange rates ---

    @abstractmethod
    async def get_exchange_rate(
        self,
        month: str,
        base_currency: str,
        quote_currency: str,
    ) -> Optional[Decimal]:
        """
        Get the stored multiplier for one month and currency pair.

        Only the pair as stored is returned; inverse and cross rates
        are derived by the Rate Table.

        Args:
            month: YYYY-MM
            base_currency: e.g. "EUR"
            quote_currency: e.g. "USD"

        Returns:
            Units of quote per unit of base, or None if not stored
        """
        pass

    @abstractmethod
    async def save_exchange_rate(self, rate: ExchangeRate) -> ExchangeRate:
        """Insert or replace the rate for (month, base, quote)."""
        pass

    @abstractmethod
    async def list_exchange_rates(self) -> list[ExchangeRate]:
        """List rates, newest month first."""
        pass

    # --- Decision log ---

    @abstractmethod
    async def append_log_entry(self, entry: SyncLogEntry) -> bool:
        """
        Append a decision-log entry. The log is append-only.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_log_entries(self, run_id: UUID) -> list[SyncLogEntry]:
        """
        Get all entries of one run.

        Returns:
            Entries in the order they were appended
        """
        pass

    @abstractmethod
    async def get_recent_log_entries(self, limit: int = 100) -> list[SyncLogEntry]:
        """Get the most recent entries (newest first)."""
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass
