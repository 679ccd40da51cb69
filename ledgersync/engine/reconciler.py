"""
Reconciliation Engine

Runs one synchronization pass for one SyncDirection: fetch the source
ledger's delta since the stored watermark, classify each transaction, hand
it to the matching handler, then move the watermark.

DESIGN DECISION: Handlers never log. Each returns a HandlerResult (or
raises); the per-transaction loop turns that into exactly one decision-log
entry. Errors are caught at two boundaries:
- per transaction: RateUnavailable, ledger write, store failures
- per direction: configuration errors and anything around the watermark

Transactions are processed one at a time, in ledger order. Mirror creation
and dedup on the same account must never interleave.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Callable, Optional
from uuid import UUID

import structlog

from ledgersync.audit import DecisionLogger
from ledgersync.config import SyncSettings
from ledgersync.engine.classify import (
    Classification,
    Deleted,
    Ignored,
    MirrorDrift,
    NewCandidate,
    SourceDrift,
    classify,
    find_mapping,
)
from ledgersync.engine.dedup import DedupPolicy, rank_transfer_matches
from ledgersync.engine.directions import AccountPair, SyncDirection
from ledgersync.engine.tags import mirror_tag
from ledgersync.errors import (
    ConfigurationError,
    LedgerWriteFailure,
    StoreFailure,
    SyncError,
)
from ledgersync.models.audit import SubRunStats, SyncAction
from ledgersync.models.ledger import (
    LedgerTransaction,
    NewTransaction,
    TransactionUpdate,
)
from ledgersync.models.sync import (
    MAX_LINK_REASON_LENGTH,
    LinkedTransaction,
    LinkType,
    RunStatus,
    SourceBudget,
    SyncStatus,
    SyncWatermark,
    TransactionMapping,
    utc_now,
)
from ledgersync.services.currency import RateTable, apply_rate
from ledgersync.services.ledger import (
    DuplicateImportError,
    LedgerClientInterface,
    LedgerError,
)
from ledgersync.services.storage import MappingStoreInterface, StorageError


logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class HandlerResult:
    action: SyncAction
    reason: str
    mirror_id: Optional[str] = None
    converted_amount: Optional[int] = None
    rate: Optional[Decimal] = None
    link_name: Optional[str] = None
    # False for no-ops: counted, but nothing happened worth a log entry
    recorded: bool = True

    @classmethod
    def noop(cls, reason: str) -> "HandlerResult":
        return cls(action=SyncAction.SKIP, reason=reason, recorded=False)


class ReconciliationEngine:
    """
    Converges one ledger pair, one direction at a time.

    Usage:
        engine = ReconciliationEngine(ledger, store, RateTable(store), DecisionLogger(store), settings)
        stats = await engine.run(direction, run_id)
    """

    def __init__(
        self,
        ledger: LedgerClientInterface,
        store: MappingStoreInterface,
        rates: RateTable,
        decision_logger: DecisionLogger,
        settings: SyncSettings,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._ledger = ledger
        self._store = store
        self._rates = rates
        self._decisions = decision_logger
        self._settings = settings
        self._policy = DedupPolicy.from_settings(settings)
        self._prefixes = settings.mirror_tag_prefixes
        self._clock = clock or utc_now
        self._handlers = {
            Deleted: self._handle_deleted,
            MirrorDrift: self._handle_mirror_drift,
            SourceDrift: self._handle_source_drift,
            NewCandidate: self._handle_new_candidate,
            Ignored: self._handle_ignored,
        }

    # ------------------------------------------------------------------
    # Direction boundary
    # ------------------------------------------------------------------

    async def run(self, direction: SyncDirection, run_id: UUID) -> SubRunStats:
        """
        Run one sub-run. Never raises.

        A failure outside the per-transaction loop counts as one error,
        marks the watermark stream as failed and leaves its cursor alone.
        """
        stats = SubRunStats()
        log = logger.bind(direction=direction.label, stream=direction.stream, run_id=str(run_id))
        try:
            await self._run(direction, run_id, stats, log)
        except Exception as e:
            stats.errors += 1
            log.error("sub_run_failed", error=str(e), error_type=type(e).__name__, exc_info=True)
            await self._mark_failed(direction, f"{type(e).__name__}: {e}")
            await self._decisions.log_run_failed(
                run_id=run_id,
                budget_id=direction.source.id,
                budget_name=direction.source.name,
                error_message=str(e),
                stream=direction.stream,
            )
        return stats

    async def _run(self, direction: SyncDirection, run_id: UUID, stats: SubRunStats, log) -> None:
        if not direction.pairs:
            log.info("sub_run_skipped_no_links")
            return

        watermark = await self._load_watermark(direction)
        previous = watermark.last_watermark
        watermark.last_status = RunStatus.RUNNING
        watermark.last_run_at = self._clock()
        await self._save_watermark(watermark)

        page = await self._ledger.list_transactions(
            direction.source.id,
            since_date=self._settings.start_date,
            watermark=previous,
        )
        log.info(
            "sub_run_started",
            fetched=len(page.transactions),
            from_watermark=previous,
            to_watermark=page.watermark,
        )

        for transaction in page.transactions:
            stats.processed += 1
            await self._process(direction, run_id, transaction, stats, log)

        watermark.last_run_at = self._clock()
        watermark.total_synced += stats.created + stats.updated
        if stats.errors:
            # Keep the cursor so failed transactions are fetched again
            watermark.last_status = RunStatus.ERROR
            watermark.last_error = f"{stats.errors} transaction(s) failed"
        else:
            watermark.last_watermark = page.watermark
            watermark.last_status = RunStatus.SUCCESS
            watermark.last_error = None
        await self._save_watermark(watermark)

        log.info("sub_run_completed", **stats.model_dump())

    async def _load_watermark(self, direction: SyncDirection) -> SyncWatermark:
        try:
            watermark = await self._store.get_watermark(direction.source.id, direction.stream)
        except StorageError as e:
            raise StoreFailure(f"Could not read watermark: {e}") from e
        return watermark or SyncWatermark(budget_id=direction.source.id, stream=direction.stream)

    async def _save_watermark(self, watermark: SyncWatermark) -> None:
        try:
            await self._store.save_watermark(watermark)
        except StorageError as e:
            raise StoreFailure(f"Could not write watermark: {e}") from e

    async def _mark_failed(self, direction: SyncDirection, message: str) -> None:
        """Best effort: the store may be what failed."""
        try:
            watermark = await self._store.get_watermark(direction.source.id, direction.stream)
            watermark = watermark or SyncWatermark(budget_id=direction.source.id, stream=direction.stream)
            watermark.last_status = RunStatus.ERROR
            watermark.last_error = message[:2000]
            watermark.last_run_at = self._clock()
            await self._store.save_watermark(watermark)
        except StorageError as e:
            logger.error("watermark_status_write_failed", stream=direction.stream, error=str(e))

    # ------------------------------------------------------------------
    # Transaction boundary
    # ------------------------------------------------------------------

    async def _process(
        self,
        direction: SyncDirection,
        run_id: UUID,
        transaction: LedgerTransaction,
        stats: SubRunStats,
        log,
    ) -> None:
        try:
            classification = await classify(transaction, direction, self._store, self._prefixes)
            result = await self._dispatch(direction, classification)
        except ConfigurationError:
            raise
        except (SyncError, LedgerError, StorageError) as e:
            stats.errors += 1
            log.warning(
                "transaction_failed",
                transaction_id=transaction.id,
                error=str(e),
                error_type=type(e).__name__,
            )
            await self._decisions.log_transaction_failed(
                run_id=run_id,
                budget_id=direction.source.id,
                budget_name=direction.source.name,
                transaction=transaction,
                error_message=str(e),
                reason=type(e).__name__,
                mirror_transaction_id=getattr(e, "mirror_transaction_id", None),
            )
            return

        if result.action == SyncAction.CREATE:
            stats.created += 1
        elif result.action == SyncAction.UPDATE:
            stats.updated += 1
        elif result.action == SyncAction.DELETE:
            stats.deleted += 1
        else:
            stats.skipped += 1

        if result.recorded:
            await self._decisions.log_decision(
                run_id=run_id,
                budget_id=direction.source.id,
                budget_name=direction.source.name,
                transaction=transaction,
                action=result.action,
                reason=result.reason,
                mirror_transaction_id=result.mirror_id,
                converted_amount=result.converted_amount,
                rate_used=result.rate,
                link_name=result.link_name,
            )
        else:
            log.debug("transaction_skipped", transaction_id=transaction.id, reason=result.reason)

    async def _dispatch(self, direction: SyncDirection, classification: Classification) -> HandlerResult:
        handler = self._handlers[type(classification)]
        return await handler(direction, classification)

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    async def _handle_ignored(self, direction: SyncDirection, item: Ignored) -> HandlerResult:
        return HandlerResult.noop(item.reason)

    async def _handle_new_candidate(self, direction: SyncDirection, item: NewCandidate) -> HandlerResult:
        transaction, pair = item.transaction, item.pair

        if await self._store.find_linked_transaction(transaction.id) is not None:
            return HandlerResult.noop("already_linked")

        amount, rate = await self._mirror_value(direction, transaction, direction.source_slot)

        if self._policy.enabled:
            match, superseded = await self._find_transfer(direction, pair, amount, transaction)
            if match is not None:
                return await self._link_transfer(direction, item, match, superseded, amount, rate)

        tag = mirror_tag(
            transaction.id,
            direction.tag_prefix,
            direction.tag_code,
            max_length=self._settings.tag_max_length,
        )
        new = self._mirror_payload(pair.target_account_id, transaction, amount, tag)
        try:
            mirror = await self._ledger.create_transaction(direction.target.id, new)
        except DuplicateImportError:
            return await self._adopt_existing_mirror(direction, item, tag, amount, rate)
        except LedgerError as e:
            raise LedgerWriteFailure(f"Creating mirror in {direction.target.name} failed: {e}") from e

        mapping = self._new_mapping(direction, transaction, mirror.id, amount, rate)
        await self._create_mapping(mapping, mirror.id)
        return HandlerResult(
            SyncAction.CREATE,
            "mirror_created",
            mirror_id=mirror.id,
            converted_amount=amount,
            rate=rate,
            link_name=pair.name,
        )

    async def _handle_source_drift(self, direction: SyncDirection, item: SourceDrift) -> HandlerResult:
        transaction, mapping = item.transaction, item.mapping
        slot = direction.source_slot

        if (
            transaction.amount == mapping.amount_for(slot)
            and transaction.date == mapping.transaction_date
        ):
            return HandlerResult.noop("unchanged")

        amount, rate = await self._mirror_value(direction, transaction, slot)
        mirror_id = mapping.tx_id_for(direction.target_slot)
        await self._update_transaction(direction.target.id, mirror_id, transaction, amount)

        updated = self._remapped(mapping, slot, transaction, amount, rate)
        await self._update_mapping(updated, mirror_id)
        return HandlerResult(
            SyncAction.UPDATE,
            "source_updated",
            mirror_id=mirror_id,
            converted_amount=amount,
            rate=rate,
        )

    async def _handle_mirror_drift(self, direction: SyncDirection, item: MirrorDrift) -> HandlerResult:
        mirror, mapping = item.transaction, item.mapping

        if (
            mirror.amount == mapping.amount_for(direction.source_slot)
            and mirror.date == mapping.transaction_date
        ):
            return HandlerResult.noop("unchanged")

        # The mirror's source lives on the target ledger of this direction
        source = await self._ledger.get_transaction(
            direction.target.id,
            mapping.tx_id_for(direction.target_slot),
        )
        if source is None or source.deleted:
            # The source's tombstone is handled by the other direction
            return HandlerResult.noop("source_missing")

        amount, rate = await self._mirror_value(direction, source, direction.target_slot)
        if mirror.amount == amount and mirror.date == source.date:
            return HandlerResult.noop("mirror_matches_source")

        await self._update_transaction(direction.source.id, mirror.id, source, amount)
        return HandlerResult(
            SyncAction.UPDATE,
            "mirror_restored",
            mirror_id=mirror.id,
            converted_amount=amount,
            rate=rate,
        )

    async def _handle_deleted(self, direction: SyncDirection, item: Deleted) -> HandlerResult:
        mapping = await find_mapping(self._store, direction.source_slot, item.transaction.id)
        if mapping is None or not direction.owns(mapping):
            return HandlerResult.noop("untracked_deletion")

        if item.is_mirror and mapping.source_budget is direction.target_slot:
            return await self._handle_deleted_mirror(direction, item.transaction, mapping)
        if not item.is_mirror and mapping.source_budget is direction.source_slot:
            return await self._handle_deleted_source(direction, item.transaction, mapping)
        return HandlerResult.noop("untracked_deletion")

    async def _handle_deleted_source(
        self,
        direction: SyncDirection,
        transaction: LedgerTransaction,
        mapping: TransactionMapping,
    ) -> HandlerResult:
        mirror_id = mapping.tx_id_for(direction.target_slot)
        await self._delete_transaction(direction.target.id, mirror_id)
        await self._update_mapping(self._retired(mapping), mirror_id)
        return HandlerResult(SyncAction.DELETE, "source_deleted", mirror_id=mirror_id)

    async def _handle_deleted_mirror(
        self,
        direction: SyncDirection,
        mirror: LedgerTransaction,
        mapping: TransactionMapping,
    ) -> HandlerResult:
        source_slot = direction.target_slot
        source = await self._ledger.get_transaction(direction.target.id, mapping.tx_id_for(source_slot))

        if source is None or source.deleted:
            await self._update_mapping(self._retired(mapping), mirror.id)
            return HandlerResult(SyncAction.DELETE, "mirror_and_source_deleted", mirror_id=mirror.id)

        pair = direction.pair_for_target_account(source.account_id)
        if pair is None:
            raise ConfigurationError(
                f"No active link for account {source.account_id} in {direction.label}; "
                f"cannot recreate mirror of {source.id}"
            )

        # The original tag is consumed by the deleted mirror
        tag = mirror_tag(
            source.id,
            direction.tag_prefix,
            direction.tag_code_for(source_slot),
            max_length=self._settings.tag_max_length,
            recreated_at=self._clock(),
        )
        amount, rate = await self._mirror_value(direction, source, source_slot)
        new = self._mirror_payload(pair.source_account_id, source, amount, tag)
        try:
            recreated = await self._ledger.create_transaction(direction.source.id, new)
        except LedgerError as e:
            raise LedgerWriteFailure(f"Recreating mirror in {direction.source.name} failed: {e}") from e

        updated = self._remapped(mapping, source_slot, source, amount, rate, mirror_id=recreated.id)
        await self._update_mapping(updated, recreated.id)
        return HandlerResult(
            SyncAction.CREATE,
            "mirror_recreated",
            mirror_id=recreated.id,
            converted_amount=amount,
            rate=rate,
            link_name=pair.name,
        )

    # ------------------------------------------------------------------
    # Dedup
    # ------------------------------------------------------------------

    async def _find_transfer(
        self,
        direction: SyncDirection,
        pair: AccountPair,
        expected_amount: int,
        transaction: LedgerTransaction,
    ) -> tuple[Optional[LedgerTransaction], Optional[TransactionMapping]]:
        """
        Best unlinked transfer candidate on the target, and the mapping it
        sources if an earlier pass already mirrored it.
        """
        candidates = await self._ledger.list_account_transactions(
            direction.target.id,
            pair.target_account_id,
            since_date=self._policy.window_start(transaction.date),
        )
        candidates = [c for c in candidates if not c.has_tag_prefix(self._prefixes)]
        for candidate in rank_transfer_matches(expected_amount, transaction.date, candidates, self._policy):
            if await self._store.find_linked_transaction(candidate.id) is not None:
                continue
            mapping = await self._any_active_mapping(candidate.id)
            if mapping is None:
                return candidate, None
            if direction.owns(mapping) and mapping.source_budget is direction.target_slot:
                return candidate, mapping
            # Tracked by another link set: never link and map the same id
        return None, None

    async def _any_active_mapping(self, tx_id: str) -> Optional[TransactionMapping]:
        mapping = await self._store.get_mapping_by_personal_tx(tx_id)
        if mapping is None:
            mapping = await self._store.get_mapping_by_company_tx(tx_id)
        return mapping

    async def _link_transfer(
        self,
        direction: SyncDirection,
        item: NewCandidate,
        match: LedgerTransaction,
        superseded: Optional[TransactionMapping],
        amount: int,
        rate: Decimal,
    ) -> HandlerResult:
        """Record a genuine transfer; retire the mirror an earlier pass made for it."""
        transaction, pair = item.transaction, item.pair
        retired_mirror_id = None

        if superseded is not None:
            retired_mirror_id = superseded.tx_id_for(direction.source_slot)
            await self._delete_transaction(direction.source.id, retired_mirror_id)
            await self._update_mapping(self._retired(superseded), retired_mirror_id)

        link = LinkedTransaction(
            budget_id_a=direction.source.id,
            tx_id_a=transaction.id,
            budget_id_b=direction.target.id,
            tx_id_b=match.id,
            amount=abs(transaction.amount),
            transaction_date=transaction.date,
            link_type=LinkType.BANK_TRANSFER,
            link_reason=(
                f"expected {amount} on {transaction.date.isoformat()}, "
                f"found {match.amount} on {match.date.isoformat()} ({pair.name})"
            )[:MAX_LINK_REASON_LENGTH],
            is_auto_matched=True,
        )
        try:
            await self._store.create_linked_transaction(link)
        except StorageError as e:
            raise StoreFailure(f"Could not record linked transaction: {e}") from e

        if retired_mirror_id is not None:
            return HandlerResult(
                SyncAction.DELETE,
                "transfer_matched_mirror_retired",
                mirror_id=retired_mirror_id,
                converted_amount=amount,
                rate=rate,
                link_name=pair.name,
            )
        return HandlerResult(
            SyncAction.SKIP,
            "transfer_matched",
            mirror_id=match.id,
            converted_amount=amount,
            rate=rate,
            link_name=pair.name,
        )

    async def _adopt_existing_mirror(
        self,
        direction: SyncDirection,
        item: NewCandidate,
        tag: str,
        amount: int,
        rate: Decimal,
    ) -> HandlerResult:
        """The target already holds our mirror: make sure a mapping points at it."""
        transaction, pair = item.transaction, item.pair
        existing = await self._ledger.list_account_transactions(
            direction.target.id,
            pair.target_account_id,
            since_date=self._settings.start_date,
        )
        mirror = next((t for t in existing if t.import_id == tag), None)
        if mirror is None:
            raise LedgerWriteFailure(
                f"{direction.target.name} reports import id {tag} as taken but no such transaction is live"
            )

        owner = await find_mapping(self._store, direction.target_slot, mirror.id)
        if owner is None:
            mapping = self._new_mapping(direction, transaction, mirror.id, amount, rate)
            await self._create_mapping(mapping, mirror.id)
        return HandlerResult(
            SyncAction.SKIP,
            "mirror_already_exists",
            mirror_id=mirror.id,
            converted_amount=amount,
            rate=rate,
            link_name=pair.name,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _mirror_value(
        self,
        direction: SyncDirection,
        source: LedgerTransaction,
        source_slot: SourceBudget,
    ) -> tuple[int, Decimal]:
        """
        Amount a mirror of `source` must carry, and the rate used.

        The rate is always personal-slot currency -> company-slot currency;
        a company-slot source divides by it.
        """
        rate = await self._rates.rate_for(
            source.date,
            direction.personal_budget.currency,
            direction.company_budget.currency,
        )
        converted = apply_rate(source.amount, rate, inverse=source_slot is SourceBudget.COMPANY)
        return -converted, rate

    def _mirror_memo(self, source: LedgerTransaction) -> str:
        if source.memo:
            return f"{source.memo}{self._settings.memo_suffix}"
        return self._settings.mirror_memo

    def _mirror_payload(
        self,
        account_id: str,
        source: LedgerTransaction,
        amount: int,
        tag: str,
    ) -> NewTransaction:
        return NewTransaction(
            account_id=account_id,
            date=source.date,
            amount=amount,
            payee_name=source.payee_name[:200] if source.payee_name else None,
            memo=self._mirror_memo(source),
            import_id=tag,
        )

    def _new_mapping(
        self,
        direction: SyncDirection,
        source: LedgerTransaction,
        mirror_id: str,
        mirror_amount: int,
        rate: Decimal,
    ) -> TransactionMapping:
        personal_is_source = direction.source_slot is SourceBudget.PERSONAL
        return TransactionMapping(
            personal_budget_id=direction.personal_budget.id,
            company_budget_id=direction.company_budget.id,
            personal_tx_id=source.id if personal_is_source else mirror_id,
            company_tx_id=mirror_id if personal_is_source else source.id,
            personal_amount=source.amount if personal_is_source else mirror_amount,
            company_amount=mirror_amount if personal_is_source else source.amount,
            exchange_rate=rate,
            transaction_date=source.date,
            source_budget=direction.source_slot,
        )

    def _remapped(
        self,
        mapping: TransactionMapping,
        source_slot: SourceBudget,
        source: LedgerTransaction,
        mirror_amount: int,
        rate: Decimal,
        mirror_id: Optional[str] = None,
    ) -> TransactionMapping:
        """Copy of `mapping` carrying the source's current values."""
        values = mapping.model_dump()
        personal_is_source = source_slot is SourceBudget.PERSONAL
        values.update(
            personal_amount=source.amount if personal_is_source else mirror_amount,
            company_amount=mirror_amount if personal_is_source else source.amount,
            exchange_rate=rate,
            transaction_date=source.date,
            sync_status=SyncStatus.ACTIVE,
            updated_at=self._clock(),
        )
        if mirror_id is not None:
            values["company_tx_id" if personal_is_source else "personal_tx_id"] = mirror_id
        return TransactionMapping.model_validate(values)

    def _retired(self, mapping: TransactionMapping) -> TransactionMapping:
        return mapping.model_copy(update={
            "sync_status": SyncStatus.DELETED,
            "updated_at": self._clock(),
        })

    async def _update_transaction(
        self,
        budget_id: str,
        mirror_id: str,
        source: LedgerTransaction,
        amount: int,
    ) -> None:
        update = TransactionUpdate(amount=amount, date=source.date, memo=self._mirror_memo(source))
        try:
            await self._ledger.update_transaction(budget_id, mirror_id, update)
        except LedgerError as e:
            raise LedgerWriteFailure(f"Updating mirror {mirror_id} failed: {e}", mirror_id) from e

    async def _delete_transaction(self, budget_id: str, mirror_id: str) -> None:
        try:
            await self._ledger.delete_transaction(budget_id, mirror_id)
        except LedgerError as e:
            raise LedgerWriteFailure(f"Deleting mirror {mirror_id} failed: {e}", mirror_id) from e

    async def _create_mapping(self, mapping: TransactionMapping, mirror_id: str) -> None:
        try:
            await self._store.create_mapping(mapping)
        except StorageError as e:
            raise StoreFailure(f"Mirror {mirror_id} written but mapping not saved: {e}") from e

    async def _update_mapping(self, mapping: TransactionMapping, mirror_id: str) -> None:
        try:
            await self._store.update_mapping(mapping)
        except StorageError as e:
            raise StoreFailure(f"Mapping {mapping.id} for mirror {mirror_id} not saved: {e}") from e
