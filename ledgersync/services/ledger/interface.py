"""
Abstract Ledger Client Interface

The reconciliation engine talks to budget ledgers only through this
contract. Timeouts and retry-with-backoff belong to the implementation;
the engine never retries a ledger call itself.
"""

from abc import ABC, abstractmethod
from datetime import date
from typing import Optional

from ledgersync.models.ledger import (
    LedgerTransaction,
    NewTransaction,
    TransactionPage,
    TransactionUpdate,
)


class LedgerClientInterface(ABC):
    """Read and write transactions of one ledger service."""

    async def aclose(self) -> None:
        """Release network resources."""
        return None

    @abstractmethod
    async def list_transactions(
        self,
        budget_id: str,
        since_date: Optional[date] = None,
        watermark: Optional[int] = None,
    ) -> TransactionPage:
        """
        List a budget's transactions.

        Args:
            budget_id: Budget to read
            since_date: Only transactions on or after this date
            watermark: Only transactions changed after this cursor
                (tombstones of deleted transactions included)

        Returns:
            The transactions plus the cursor to pass next time

        Raises:
            LedgerError: If the ledger can't be read
        """
        pass

    @abstractmethod
    async def list_account_transactions(
        self,
        budget_id: str,
        account_id: str,
        since_date: Optional[date] = None,
    ) -> list[LedgerTransaction]:
        """List the live transactions of one account."""
        pass

    @abstractmethod
    async def get_transaction(self, budget_id: str, transaction_id: str) -> Optional[LedgerTransaction]:
        """
        Fetch one transaction.

        Returns:
            The transaction (possibly a tombstone), None if the ledger
            doesn't know it
        """
        pass

    @abstractmethod
    async def create_transaction(self, budget_id: str, transaction: NewTransaction) -> LedgerTransaction:
        """
        Create a transaction.

        Raises:
            DuplicateImportError: The import id is already used in the account.
                Not a failure: the transaction already exists.
            LedgerError: Any other rejection
        """
        pass

    @abstractmethod
    async def update_transaction(
        self,
        budget_id: str,
        transaction_id: str,
        update: TransactionUpdate,
    ) -> LedgerTransaction:
        """
        Update mutable fields of a transaction.

        Raises:
            TransactionNotFoundError: If the transaction doesn't exist
            LedgerError: Any other rejection
        """
        pass

    @abstractmethod
    async def delete_transaction(self, budget_id: str, transaction_id: str) -> bool:
        """
        Delete a transaction.

        Returns:
            True once the transaction is gone, including when it already was
        """
        pass


class LedgerError(Exception):
    """Base exception for ledger operations."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class DuplicateImportError(LedgerError):
    """A transaction with this import id already exists."""

    def __init__(self, import_id: str, message: Optional[str] = None):
        super().__init__(message or f"Import id already used: {import_id}", status_code=409)
        self.import_id = import_id


class TransactionNotFoundError(LedgerError):
    """The ledger doesn't know the transaction."""
    pass


class LedgerUnavailableError(LedgerError):
    """Transient failure (network, rate limit, server error). Safe to retry."""
    pass
