"""
Shared fixtures.

FakeLedger is an in-process ledger service that behaves like the YNAB API
where the engine can tell the difference: a server-knowledge counter for
delta fetches, tombstones for deletions, and import ids that stay taken
after their transaction is deleted.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from itertools import count
from typing import Optional

import pytest

from ledgersync.audit import DecisionLogger
from ledgersync.config import BudgetConfig, SyncSettings
from ledgersync.engine import ReconciliationEngine
from ledgersync.models.ledger import (
    ClearedStatus,
    LedgerTransaction,
    NewTransaction,
    TransactionPage,
    TransactionUpdate,
)
from ledgersync.models.sync import AccountLink, CompanyAccountLink, ExchangeRate
from ledgersync.services.currency import RateTable
from ledgersync.services.ledger import (
    DuplicateImportError,
    LedgerClientInterface,
    LedgerError,
    TransactionNotFoundError,
)
from ledgersync.services.storage import InMemoryMappingStore


PERSONAL = BudgetConfig(id="personal", name="Personal", currency="EUR")
ACME = BudgetConfig(id="acme", name="Acme LLC", currency="USD")
GLOBEX = BudgetConfig(id="globex", name="Globex LLC", currency="USD")

FIXED_NOW = datetime(2026, 2, 1, 12, 0, tzinfo=timezone.utc)


class FakeLedger(LedgerClientInterface):
    """In-memory ledger service for all budgets."""

    def __init__(self):
        self._knowledge = count(1)
        self._ids = count(1)
        self.server_knowledge = 0
        # budget_id -> tx_id -> (transaction, knowledge at last change)
        self._budgets: dict[str, dict[str, tuple[LedgerTransaction, int]]] = {}
        self._import_ids: dict[str, set[tuple[str, str]]] = {}
        self.creates: list[tuple[str, NewTransaction]] = []
        self.updates: list[tuple[str, str, TransactionUpdate]] = []
        self.deletes: list[tuple[str, str]] = []
        self.fail_writes = False

    def _bump(self) -> int:
        self.server_knowledge = next(self._knowledge)
        return self.server_knowledge

    def _store(self, budget_id: str, transaction: LedgerTransaction) -> LedgerTransaction:
        self._budgets.setdefault(budget_id, {})[transaction.id] = (transaction, self._bump())
        return transaction.model_copy()

    # --- Test helpers: what a user does in the ledger app ---

    def add(
        self,
        budget_id: str,
        account_id: str,
        amount: int,
        day: date,
        memo: Optional[str] = None,
        payee_name: Optional[str] = None,
        import_id: Optional[str] = None,
    ) -> LedgerTransaction:
        transaction = LedgerTransaction(
            id=f"{budget_id}-tx-{next(self._ids)}",
            date=day,
            amount=amount,
            account_id=account_id,
            account_name=account_id.title(),
            payee_name=payee_name,
            memo=memo,
            import_id=import_id,
            cleared=ClearedStatus.CLEARED,
        )
        if import_id:
            self._import_ids.setdefault(budget_id, set()).add((account_id, import_id))
        return self._store(budget_id, transaction)

    def edit(self, budget_id: str, tx_id: str, **changes) -> LedgerTransaction:
        current, _ = self._budgets[budget_id][tx_id]
        return self._store(budget_id, current.model_copy(update=changes))

    def remove(self, budget_id: str, tx_id: str) -> None:
        current, _ = self._budgets[budget_id][tx_id]
        self._store(budget_id, current.model_copy(update={"deleted": True}))

    def live(self, budget_id: str) -> list[LedgerTransaction]:
        return [t.model_copy() for t, _ in self._budgets.get(budget_id, {}).values() if not t.deleted]

    def find(self, budget_id: str, tx_id: str) -> LedgerTransaction:
        return self._budgets[budget_id][tx_id][0].model_copy()

    def mirrors(self, budget_id: str) -> list[LedgerTransaction]:
        return [t for t in self.live(budget_id) if t.import_id]

    # --- LedgerClientInterface ---

    async def list_transactions(self, budget_id, since_date=None, watermark=None) -> TransactionPage:
        rows = sorted(self._budgets.get(budget_id, {}).values(), key=lambda r: r[1])
        transactions = [
            t.model_copy() for t, knowledge in rows
            if (watermark is None or knowledge > watermark)
            and (since_date is None or t.date >= since_date)
            and (watermark is not None or not t.deleted)
        ]
        return TransactionPage(transactions=transactions, watermark=self.server_knowledge)

    async def list_account_transactions(self, budget_id, account_id, since_date=None):
        return [
            t for t in self.live(budget_id)
            if t.account_id == account_id and (since_date is None or t.date >= since_date)
        ]

    async def get_transaction(self, budget_id, transaction_id):
        row = self._budgets.get(budget_id, {}).get(transaction_id)
        return row[0].model_copy() if row else None

    async def create_transaction(self, budget_id, transaction: NewTransaction) -> LedgerTransaction:
        if self.fail_writes:
            raise LedgerError("ledger rejected the write", status_code=400)
        key = (transaction.account_id, transaction.import_id)
        if key in self._import_ids.get(budget_id, set()):
            raise DuplicateImportError(transaction.import_id)
        self.creates.append((budget_id, transaction))
        self._import_ids.setdefault(budget_id, set()).add(key)
        created = LedgerTransaction(
            id=f"{budget_id}-tx-{next(self._ids)}",
            account_name=transaction.account_id.title(),
            **transaction.model_dump(),
        )
        return self._store(budget_id, created)

    async def update_transaction(self, budget_id, transaction_id, update: TransactionUpdate):
        if self.fail_writes:
            raise LedgerError("ledger rejected the write", status_code=400)
        row = self._budgets.get(budget_id, {}).get(transaction_id)
        if row is None or row[0].deleted:
            raise TransactionNotFoundError(f"{transaction_id} not found", status_code=404)
        self.updates.append((budget_id, transaction_id, update))
        return self._store(budget_id, row[0].model_copy(update=update.model_dump(exclude_none=True)))

    async def delete_transaction(self, budget_id, transaction_id) -> bool:
        if self.fail_writes:
            raise LedgerError("ledger rejected the write", status_code=400)
        self.deletes.append((budget_id, transaction_id))
        row = self._budgets.get(budget_id, {}).get(transaction_id)
        if row is not None and not row[0].deleted:
            self.remove(budget_id, transaction_id)
        return True


@pytest.fixture
def ledger() -> FakeLedger:
    return FakeLedger()


@pytest.fixture
def store() -> InMemoryMappingStore:
    return InMemoryMappingStore()


@pytest.fixture
def sync_settings() -> SyncSettings:
    return SyncSettings(
        personal_budget=PERSONAL,
        company_budgets=[ACME, GLOBEX],
        start_date=date(2026, 1, 1),
    )


@pytest.fixture
async def linked_store(store: InMemoryMappingStore) -> InMemoryMappingStore:
    """Store with one loan link per organization, one company link and January rates."""
    await store.save_account_link(AccountLink(
        company_budget_id=ACME.id,
        company_name=ACME.name,
        personal_account_id="p-acme-loan",
        company_account_id="acme-owner-loan",
    ))
    await store.save_account_link(AccountLink(
        company_budget_id=GLOBEX.id,
        company_name=GLOBEX.name,
        personal_account_id="p-globex-loan",
        company_account_id="globex-owner-loan",
    ))
    await store.save_company_account_link(CompanyAccountLink(
        budget_id_1=ACME.id,
        account_id_1="acme-due-globex",
        name_1="Due from Globex",
        budget_id_2=GLOBEX.id,
        account_id_2="globex-due-acme",
        name_2="Due to Acme",
    ))
    await store.save_exchange_rate(ExchangeRate(
        month="2026-01", base_currency="EUR", quote_currency="USD", rate=Decimal("1.05"),
    ))
    await store.save_exchange_rate(ExchangeRate(
        month="2026-02", base_currency="EUR", quote_currency="USD", rate=Decimal("1.10"),
    ))
    return store


@pytest.fixture
def decision_logger(store: InMemoryMappingStore) -> DecisionLogger:
    return DecisionLogger(store)


@pytest.fixture
def engine(ledger, store, decision_logger, sync_settings) -> ReconciliationEngine:
    return ReconciliationEngine(
        ledger=ledger,
        store=store,
        rates=RateTable(store),
        decision_logger=decision_logger,
        settings=sync_settings,
        clock=lambda: FIXED_NOW,
    )
