"""
Cycle Orchestrator for Ledger Sync

This module ties together all the components and defines one full
synchronization cycle:
1. Organization <-> organization link set, both directions, per ledger pair
2. Personal <-> organization link set, both directions, per organization

DESIGN DECISION: The organization pairs always run first. Their dedup can
retire mirrors whose absence the personal/organization pass must observe
within the same cycle.

The orchestrator enforces the boundaries:
- At most one cycle at a time (rejected, not queued)
- Sub-runs execute one after another, never in parallel
- Once a cycle has started nothing propagates to the caller
"""

import threading
from typing import Optional

import structlog

from ledgersync.audit import DecisionLogger, create_run_id
from ledgersync.config import Settings, SyncSettings, get_settings
from ledgersync.engine import (
    ReconciliationEngine,
    SyncDirection,
    company_directions,
    loan_directions,
)
from ledgersync.errors import ConfigurationError
from ledgersync.models.audit import CycleReport, Decision, SubRunStats
from ledgersync.models.sync import CompanyAccountLink, utc_now
from ledgersync.services.currency import RateTable
from ledgersync.services.ledger import LedgerClientInterface, YnabLedgerClient
from ledgersync.services.storage import (
    MappingStoreInterface,
    SqlMappingStore,
    StorageError,
)


logger = structlog.get_logger(__name__)


class CycleAlreadyRunningError(Exception):
    """A cycle was triggered while another one holds the lock."""
    pass


class CycleLock:
    """
    Single-slot guard. Acquisition never waits.

    Share one instance between orchestrators that use the same store.
    """

    def __init__(self):
        self._lock = threading.Lock()

    def try_acquire(self) -> bool:
        return self._lock.acquire(blocking=False)

    def release(self) -> None:
        self._lock.release()

    @property
    def locked(self) -> bool:
        return self._lock.locked()


class CycleOrchestrator:
    """
    Runs every configured ledger pair and direction once.

    Usage:
        orchestrator = CycleOrchestrator(engine, store, settings, decision_logger)
        report = await orchestrator.run_cycle()
    """

    def __init__(
        self,
        engine: ReconciliationEngine,
        store: MappingStoreInterface,
        settings: SyncSettings,
        decision_logger: DecisionLogger,
        lock: Optional[CycleLock] = None,
    ):
        self._engine = engine
        self._store = store
        self._settings = settings
        self._decisions = decision_logger
        self._lock = lock or CycleLock()

    @property
    def is_running(self) -> bool:
        return self._lock.locked

    async def run_cycle(self) -> CycleReport:
        """
        Run one full cycle.

        Returns:
            The cycle report, with one Decision per decision-log entry

        Raises:
            CycleAlreadyRunningError: If a cycle is already in flight.
                Raised before any work starts.
        """
        if not self._lock.try_acquire():
            logger.warning("cycle_rejected_already_running")
            raise CycleAlreadyRunningError("A sync cycle is already running")

        try:
            return await self._run_cycle()
        finally:
            self._lock.release()

    async def _run_cycle(self) -> CycleReport:
        run_id = create_run_id()
        report = CycleReport(run_id=run_id)
        totals = SubRunStats()
        log = logger.bind(run_id=str(run_id))
        log.info("cycle_started")

        for direction in await self._company_pass(run_id, totals):
            totals.add(await self._engine.run(direction, run_id))

        for direction in await self._loan_pass(run_id, totals):
            totals.add(await self._engine.run(direction, run_id))

        report.created = totals.created
        report.updated = totals.updated
        report.deleted = totals.deleted
        report.skipped = totals.skipped
        report.errors = totals.errors
        report.processed = totals.processed

        try:
            entries = await self._store.get_log_entries(run_id)
            report.transactions = [Decision.from_log_entry(e) for e in entries]
        except StorageError as e:
            log.error("cycle_report_log_unavailable", error=str(e))

        report.finished_at = utc_now()
        log.info("cycle_completed", **report.to_summary())
        return report

    async def _company_pass(self, run_id, totals: SubRunStats) -> list[SyncDirection]:
        """Directions for every organization ledger pair that has active links."""
        try:
            links = await self._store.get_company_account_links(active_only=True)
        except StorageError as e:
            await self._setup_failed(run_id, totals, "company_links", e)
            return []

        # Links are symmetric: one group per unordered ledger pair, each link
        # flipped so the lower budget id takes side 1. Two groups for the same
        # pair would share a watermark stream.
        pairs: dict[tuple[str, str], list[CompanyAccountLink]] = {}
        for link in links:
            key = tuple(sorted((link.budget_id_1, link.budget_id_2)))
            pairs.setdefault(key, []).append(link.oriented(key[0]))

        directions = []
        for (first_id, second_id), pair_links in pairs.items():
            first = self._settings.budget(first_id)
            second = self._settings.budget(second_id)
            if first is None or second is None:
                missing = first_id if first is None else second_id
                await self._setup_failed(
                    run_id,
                    totals,
                    f"company:{first_id}:{second_id}",
                    ConfigurationError(f"Company link references unconfigured budget {missing}"),
                )
                continue
            if first.currency != second.currency:
                await self._setup_failed(
                    run_id,
                    totals,
                    f"company:{first_id}:{second_id}",
                    ConfigurationError(
                        f"Company link joins {first.currency} and {second.currency} budgets"
                    ),
                )
                continue
            directions.extend(
                company_directions(first, second, pair_links, self._settings.company_tag_prefix)
            )
        return directions

    async def _loan_pass(self, run_id, totals: SubRunStats) -> list[SyncDirection]:
        """Directions for the personal ledger against each organization."""
        try:
            links = await self._store.get_account_links(active_only=True)
        except StorageError as e:
            await self._setup_failed(run_id, totals, "account_links", e)
            return []

        known = {budget.id for budget in self._settings.company_budgets}
        for link in links:
            if link.company_budget_id not in known:
                await self._setup_failed(
                    run_id,
                    totals,
                    f"loan:{link.company_budget_id}",
                    ConfigurationError(
                        f"Account link {link.id} references unconfigured budget {link.company_budget_id}"
                    ),
                )

        directions = []
        for company in self._settings.company_budgets:
            directions.extend(
                loan_directions(
                    self._settings.personal_budget,
                    company,
                    links,
                    self._settings.loan_tag_prefix,
                )
            )
        return directions

    async def _setup_failed(self, run_id, totals: SubRunStats, stream: str, error: Exception) -> None:
        """A link set could not be turned into directions: one error, keep going."""
        totals.errors += 1
        logger.error("sub_run_setup_failed", run_id=str(run_id), stream=stream, error=str(error))
        await self._decisions.log_run_failed(
            run_id=run_id,
            budget_id=None,
            budget_name=None,
            error_message=f"{type(error).__name__}: {error}",
            stream=stream,
        )


def create_app_components(
    settings: Optional[Settings] = None,
    ledger: Optional[LedgerClientInterface] = None,
    store: Optional[MappingStoreInterface] = None,
    lock: Optional[CycleLock] = None,
) -> tuple[CycleOrchestrator, MappingStoreInterface, LedgerClientInterface]:
    """
    Factory function to create all application components.

    Args:
        settings: Settings container, defaults to the cached one
        ledger: Ledger client, defaults to the YNAB client
        store: Mapping store, defaults to the SQL store
        lock: Cycle lock to share between orchestrators

    Returns:
        (orchestrator, store, ledger). The caller owns closing the
        store and the ledger client.
    """
    settings = settings or get_settings()
    sync_settings = settings.sync

    ledger = ledger or YnabLedgerClient(settings.ynab)
    store = store or SqlMappingStore(settings.database)
    decision_logger = DecisionLogger(store)

    engine = ReconciliationEngine(
        ledger=ledger,
        store=store,
        rates=RateTable(store),
        decision_logger=decision_logger,
        settings=sync_settings,
    )
    orchestrator = CycleOrchestrator(
        engine=engine,
        store=store,
        settings=sync_settings,
        decision_logger=decision_logger,
        lock=lock,
    )
    return orchestrator, store, ledger
