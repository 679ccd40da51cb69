"""
In-memory Mapping Store

Dictionary-backed implementation of MappingStoreInterface. Used by the
test suite and for dry runs. Models are copied on the way in and out so
callers can never mutate stored state behind the store's back.
"""

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
from ledgersync.services.storage.interface import (
    DuplicateError,
    MappingStoreInterface,
    NotFoundError,
)


class InMemoryMappingStore(MappingStoreInterface):
    """Mapping store that lives for the lifetime of the process."""

    def __init__(self):
        self._watermarks: dict[tuple[str, str], SyncWatermark] = {}
        self._mappings: dict[UUID, TransactionMapping] = {}
        self._linked: dict[UUID, LinkedTransaction] = {}
        self._account_links: dict[UUID, AccountLink] = {}
        self._company_links: dict[UUID, CompanyAccountLink] = {}
        self._rates: dict[tuple[str, str, str], ExchangeRate] = {}
        self._log: list[SyncLogEntry] = []

    # --- Watermarks ---

    async def get_watermark(self, budget_id: str, stream: str) -> Optional[SyncWatermark]:
        watermark = self._watermarks.get((budget_id, stream))
        return watermark.model_copy() if watermark else None

    async def save_watermark(self, watermark: SyncWatermark) -> SyncWatermark:
        self._watermarks[(watermark.budget_id, watermark.stream)] = watermark.model_copy()
        return watermark

    async def list_watermarks(self) -> list[SyncWatermark]:
        return [w.model_copy() for w in self._watermarks.values()]

    # --- Transaction mappings ---

    async def get_mapping(self, mapping_id: UUID) -> Optional[TransactionMapping]:
        mapping = self._mappings.get(mapping_id)
        return mapping.model_copy() if mapping else None

    def _find_mapping(self, attr: str, tx_id: str, active_only: bool) -> Optional[TransactionMapping]:
        # Newest first so an active row wins over retired rows for the same id
        for mapping in sorted(self._mappings.values(), key=lambda m: m.created_at, reverse=True):
            if getattr(mapping, attr) != tx_id:
                continue
            if active_only and not mapping.is_active:
                continue
            return mapping.model_copy()
        return None

    async def get_mapping_by_personal_tx(
        self,
        tx_id: str,
        active_only: bool = True,
    ) -> Optional[TransactionMapping]:
        return self._find_mapping("personal_tx_id", tx_id, active_only)

    async def get_mapping_by_company_tx(
        self,
        tx_id: str,
        active_only: bool = True,
    ) -> Optional[TransactionMapping]:
        return self._find_mapping("company_tx_id", tx_id, active_only)

    def _check_unique(self, mapping: TransactionMapping) -> None:
        if not mapping.is_active:
            return
        for other in self._mappings.values():
            if other.id == mapping.id or not other.is_active:
                continue
            taken = {other.personal_tx_id, other.company_tx_id}
            if mapping.personal_tx_id in taken or mapping.company_tx_id in taken:
                raise DuplicateError(
                    f"Transaction already mapped by active mapping {other.id}"
                )

    async def create_mapping(self, mapping: TransactionMapping) -> TransactionMapping:
        if mapping.id in self._mappings:
            raise DuplicateError(f"Mapping {mapping.id} already exists")
        self._check_unique(mapping)
        self._mappings[mapping.id] = mapping.model_copy()
        return mapping

    async def update_mapping(self, mapping: TransactionMapping) -> TransactionMapping:
        if mapping.id not in self._mappings:
            raise NotFoundError(f"Mapping {mapping.id} not found")
        self._check_unique(mapping)
        self._mappings[mapping.id] = mapping.model_copy()
        return mapping

    async def list_mappings(
        self,
        status: Optional[SyncStatus] = None,
        limit: int = 1000,
    ) -> list[TransactionMapping]:
        mappings = [
            m for m in self._mappings.values()
            if status is None or m.sync_status == status
        ]
        mappings.sort(key=lambda m: m.created_at, reverse=True)
        return [m.model_copy() for m in mappings[:limit]]

    # --- Linked transactions ---

    async def create_linked_transaction(self, link: LinkedTransaction) -> LinkedTransaction:
        for existing in self._linked.values():
            if existing.involves(link.tx_id_a) or existing.involves(link.tx_id_b):
                raise DuplicateError(f"Transaction already linked by {existing.id}")
        self._linked[link.id] = link.model_copy()
        return link

    async def get_linked_transaction(self, link_id: UUID) -> Optional[LinkedTransaction]:
        link = self._linked.get(link_id)
        return link.model_copy() if link else None

    async def update_linked_transaction(self, link: LinkedTransaction) -> LinkedTransaction:
        if link.id not in self._linked:
            raise NotFoundError(f"Linked transaction {link.id} not found")
        self._linked[link.id] = link.model_copy()
        return link

    async def find_linked_transaction(self, tx_id: str) -> Optional[LinkedTransaction]:
        for link in self._linked.values():
            if link.involves(tx_id):
                return link.model_copy()
        return None

    async def list_linked_transactions(self, limit: int = 1000) -> list[LinkedTransaction]:
        links = sorted(self._linked.values(), key=lambda l: l.created_at, reverse=True)
        return [l.model_copy() for l in links[:limit]]

    async def delete_linked_transaction(self, link_id: UUID) -> bool:
        return self._linked.pop(link_id, None) is not None

    # --- Account links ---

    async def get_account_links(self, active_only: bool = True) -> list[AccountLink]:
        return [
            l.model_copy() for l in self._account_links.values()
            if l.active or not active_only
        ]

    async def save_account_link(self, link: AccountLink) -> AccountLink:
        self._account_links[link.id] = link.model_copy()
        return link

    async def get_company_account_links(self, active_only: bool = True) -> list[CompanyAccountLink]:
        return [
            l.model_copy() for l in self._company_links.values()
            if l.active or not active_only
        ]

    async def save_company_account_link(self, link: CompanyAccountLink) -> CompanyAccountLink:
        self._company_links[link.id] = link.model_copy()
        return link

    # --- Exchange rates ---

    async def get_exchange_rate(
        self,
        month: str,
        base_currency: str,
        quote_currency: str,
    ) -> Optional[Decimal]:
        rate = self._rates.get((month, base_currency.upper(), quote_currency.upper()))
        return rate.rate if rate else None

    async def save_exchange_rate(self, rate: ExchangeRate) -> ExchangeRate:
        self._rates[(rate.month, rate.base_currency, rate.quote_currency)] = rate.model_copy()
        return rate

    async def list_exchange_rates(self) -> list[ExchangeRate]:
        rates = sorted(
            self._rates.values(),
            key=lambda r: (r.month, r.base_currency, r.quote_currency),
            reverse=True,
        )
        return [r.model_copy() for r in rates]

    # --- Decision log ---

    async def append_log_entry(self, entry: SyncLogEntry) -> bool:
        self._log.append(entry.model_copy(deep=True))
        return True

    async def get_log_entries(self, run_id: UUID) -> list[SyncLogEntry]:
        return [e.model_copy(deep=True) for e in self._log if e.run_id == run_id]

    async def get_recent_log_entries(self, limit: int = 100) -> list[SyncLogEntry]:
        return [e.model_copy(deep=True) for e in reversed(self._log)][:limit]
