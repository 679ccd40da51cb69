"""
SQL Mapping Store

SQLAlchemy 2.0 (async ORM) implementation of MappingStoreInterface.
SQLite through aiosqlite by default; any async driver works by URL.

DESIGN DECISION: Uniqueness of active mappings is checked in Python before
each write rather than with partial unique indexes, so the same schema works
on every backend. The single-writer guard in the orchestrator makes the
check-then-write safe.
"""

from contextlib import asynccontextmanager
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, AsyncIterator, Optional
from uuid import UUID

import structlog
from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    Uuid,
    delete,
    or_,
    select,
    text,
)
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from ledgersync.config import DatabaseSettings
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
    ConnectionError,
    DuplicateError,
    MappingStoreInterface,
    NotFoundError,
    StorageError,
)


logger = structlog.get_logger(__name__)


class Base(DeclarativeBase):
    pass


class WatermarkRow(Base):
    __tablename__ = "sync_watermarks"
    budget_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    stream: Mapped[str] = mapped_column(String(128), primary_key=True)
    last_watermark: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    last_run_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    last_status: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    total_synced: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class MappingRow(Base):
    __tablename__ = "transaction_mappings"
    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True)
    personal_budget_id: Mapped[str] = mapped_column(String(64), nullable=False)
    company_budget_id: Mapped[str] = mapped_column(String(64), nullable=False)
    personal_tx_id: Mapped[str] = mapped_column(String(64), nullable=False)
    company_tx_id: Mapped[str] = mapped_column(String(64), nullable=False)
    personal_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    company_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    exchange_rate: Mapped[Decimal] = mapped_column(Numeric(20, 10), nullable=False)
    transaction_date: Mapped[date] = mapped_column(Date, nullable=False)
    source_budget: Mapped[str] = mapped_column(String(16), nullable=False)
    sync_status: Mapped[str] = mapped_column(String(16), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_mappings_personal_tx", "personal_tx_id"),
        Index("ix_mappings_company_tx", "company_tx_id"),
        Index("ix_mappings_status", "sync_status"),
    )


class LinkedTransactionRow(Base):
    __tablename__ = "linked_transactions"
    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True)
    budget_id_a: Mapped[str] = mapped_column(String(64), nullable=False)
    tx_id_a: Mapped[str] = mapped_column(String(64), nullable=False)
    budget_id_b: Mapped[str] = mapped_column(String(64), nullable=False)
    tx_id_b: Mapped[str] = mapped_column(String(64), nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    transaction_date: Mapped[date] = mapped_column(Date, nullable=False)
    link_type: Mapped[str] = mapped_column(String(32), nullable=False)
    link_reason: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    is_auto_matched: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_linked_tx_a", "tx_id_a"),
        Index("ix_linked_tx_b", "tx_id_b"),
    )


class AccountLinkRow(Base):
    __tablename__ = "account_links"
    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True)
    company_budget_id: Mapped[str] = mapped_column(String(64), nullable=False)
    company_name: Mapped[str] = mapped_column(String(255), nullable=False)
    personal_account_id: Mapped[str] = mapped_column(String(64), nullable=False)
    company_account_id: Mapped[str] = mapped_column(String(64), nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class CompanyAccountLinkRow(Base):
    __tablename__ = "company_account_links"
    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True)
    budget_id_1: Mapped[str] = mapped_column(String(64), nullable=False)
    account_id_1: Mapped[str] = mapped_column(String(64), nullable=False)
    name_1: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    budget_id_2: Mapped[str] = mapped_column(String(64), nullable=False)
    account_id_2: Mapped[str] = mapped_column(String(64), nullable=False)
    name_2: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class ExchangeRateRow(Base):
    __tablename__ = "exchange_rates"
    month: Mapped[str] = mapped_column(String(7), primary_key=True)
    base_currency: Mapped[str] = mapped_column(String(3), primary_key=True)
    quote_currency: Mapped[str] = mapped_column(String(3), primary_key=True)
    rate: Mapped[Decimal] = mapped_column(Numeric(20, 10), nullable=False)
    source: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class SyncLogRow(Base):
    __tablename__ = "sync_logs"
    seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    id: Mapped[UUID] = mapped_column(Uuid, nullable=False, unique=True)
    run_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)
    budget_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    action: Mapped[str] = mapped_column(String(16), nullable=False)
    transaction_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    mirror_transaction_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    details: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_sync_logs_run_id", "run_id"),
    )


def _columns(model: Any, **overrides: Any) -> dict[str, Any]:
    """Model fields as plain column values (enums unwrapped)."""
    values = model.model_dump()
    values.update(overrides)
    return {
        key: value.value if isinstance(value, Enum) else value
        for key, value in values.items()
    }


class SqlMappingStore(MappingStoreInterface):
    """
    Mapping store backed by a relational database.

    Call `create_tables()` once at startup.
    """

    def __init__(
        self,
        settings: Optional[DatabaseSettings] = None,
        engine: Optional[AsyncEngine] = None,
    ):
        if engine is None:
            settings = settings or DatabaseSettings()
            engine = create_async_engine(settings.url, echo=settings.echo)
        self._engine = engine
        self._sessions = async_sessionmaker(
            engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )

    async def create_tables(self) -> None:
        """Create missing tables and verify the connection."""
        try:
            async with self._engine.begin() as conn:
                await conn.execute(text("SELECT 1"))
                await conn.run_sync(Base.metadata.create_all)
        except OperationalError as e:
            raise ConnectionError(f"Could not connect to database: {e}") from e
        logger.info("database_ready", tables=sorted(Base.metadata.tables))

    async def close(self) -> None:
        await self._engine.dispose()

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        """Session that commits on success and maps driver errors to StorageError."""
        try:
            async with self._sessions() as session:
                async with session.begin():
                    yield session
        except StorageError:
            raise
        except SQLAlchemyError as e:
            raise StorageError(f"Database operation failed: {e}") from e

    # --- Watermarks ---

    async def get_watermark(self, budget_id: str, stream: str) -> Optional[SyncWatermark]:
        async with self._session() as session:
            row = await session.get(WatermarkRow, (budget_id, stream))
            return SyncWatermark.model_validate(row, from_attributes=True) if row else None

    async def save_watermark(self, watermark: SyncWatermark) -> SyncWatermark:
        async with self._session() as session:
            await session.merge(WatermarkRow(**_columns(watermark)))
        return watermark

    async def list_watermarks(self) -> list[SyncWatermark]:
        async with self._session() as session:
            rows = await session.scalars(
                select(WatermarkRow).order_by(WatermarkRow.budget_id, WatermarkRow.stream)
            )
            return [SyncWatermark.model_validate(r, from_attributes=True) for r in rows]

    # --- Transaction mappings ---

    async def get_mapping(self, mapping_id: UUID) -> Optional[TransactionMapping]:
        async with self._session() as session:
            row = await session.get(MappingRow, mapping_id)
            return TransactionMapping.model_validate(row, from_attributes=True) if row else None

    async def _find_mapping(self, column: Any, tx_id: str, active_only: bool) -> Optional[TransactionMapping]:
        query = select(MappingRow).where(column == tx_id)
        if active_only:
            query = query.where(MappingRow.sync_status == SyncStatus.ACTIVE.value)
        query = query.order_by(MappingRow.created_at.desc()).limit(1)
        async with self._session() as session:
            row = (await session.scalars(query)).first()
            return TransactionMapping.model_validate(row, from_attributes=True) if row else None

    async def get_mapping_by_personal_tx(
        self,
        tx_id: str,
        active_only: bool = True,
    ) -> Optional[TransactionMapping]:
        return await self._find_mapping(MappingRow.personal_tx_id, tx_id, active_only)

    async def get_mapping_by_company_tx(
        self,
        tx_id: str,
        active_only: bool = True,
    ) -> Optional[TransactionMapping]:
        return await self._find_mapping(MappingRow.company_tx_id, tx_id, active_only)

    async def _check_unique(self, session: AsyncSession, mapping: TransactionMapping) -> None:
        if not mapping.is_active:
            return
        ids = (mapping.personal_tx_id, mapping.company_tx_id)
        clash = (await session.scalars(
            select(MappingRow).where(
                MappingRow.id != mapping.id,
                MappingRow.sync_status == SyncStatus.ACTIVE.value,
                or_(MappingRow.personal_tx_id.in_(ids), MappingRow.company_tx_id.in_(ids)),
            ).limit(1)
        )).first()
        if clash is not None:
            raise DuplicateError(f"Transaction already mapped by active mapping {clash.id}")

    async def create_mapping(self, mapping: TransactionMapping) -> TransactionMapping:
        async with self._session() as session:
            if await session.get(MappingRow, mapping.id) is not None:
                raise DuplicateError(f"Mapping {mapping.id} already exists")
            await self._check_unique(session, mapping)
            session.add(MappingRow(**_columns(mapping)))
        return mapping

    async def update_mapping(self, mapping: TransactionMapping) -> TransactionMapping:
        async with self._session() as session:
            if await session.get(MappingRow, mapping.id) is None:
                raise NotFoundError(f"Mapping {mapping.id} not found")
            await self._check_unique(session, mapping)
            await session.merge(MappingRow(**_columns(mapping)))
        return mapping

    async def list_mappings(
        self,
        status: Optional[SyncStatus] = None,
        limit: int = 1000,
    ) -> list[TransactionMapping]:
        query = select(MappingRow)
        if status is not None:
            query = query.where(MappingRow.sync_status == status.value)
        query = query.order_by(MappingRow.created_at.desc()).limit(limit)
        async with self._session() as session:
            rows = await session.scalars(query)
            return [TransactionMapping.model_validate(r, from_attributes=True) for r in rows]

    # --- Linked transactions ---

    async def create_linked_transaction(self, link: LinkedTransaction) -> LinkedTransaction:
        async with self._session() as session:
            for tx_id in (link.tx_id_a, link.tx_id_b):
                existing = await self._linked_row(session, tx_id)
                if existing is not None:
                    raise DuplicateError(f"Transaction {tx_id} already linked by {existing.id}")
            session.add(LinkedTransactionRow(**_columns(link)))
        return link

    async def get_linked_transaction(self, link_id: UUID) -> Optional[LinkedTransaction]:
        async with self._session() as session:
            row = await session.get(LinkedTransactionRow, link_id)
            return LinkedTransaction.model_validate(row, from_attributes=True) if row else None

    async def update_linked_transaction(self, link: LinkedTransaction) -> LinkedTransaction:
        async with self._session() as session:
            if await session.get(LinkedTransactionRow, link.id) is None:
                raise NotFoundError(f"Linked transaction {link.id} not found")
            await session.merge(LinkedTransactionRow(**_columns(link)))
        return link

    @staticmethod
    async def _linked_row(session: AsyncSession, tx_id: str) -> Optional[LinkedTransactionRow]:
        return (await session.scalars(
            select(LinkedTransactionRow).where(
                or_(LinkedTransactionRow.tx_id_a == tx_id, LinkedTransactionRow.tx_id_b == tx_id)
            ).limit(1)
        )).first()

    async def find_linked_transaction(self, tx_id: str) -> Optional[LinkedTransaction]:
        async with self._session() as session:
            row = await self._linked_row(session, tx_id)
            return LinkedTransaction.model_validate(row, from_attributes=True) if row else None

    async def list_linked_transactions(self, limit: int = 1000) -> list[LinkedTransaction]:
        async with self._session() as session:
            rows = await session.scalars(
                select(LinkedTransactionRow)
                .order_by(LinkedTransactionRow.created_at.desc())
                .limit(limit)
            )
            return [LinkedTransaction.model_validate(r, from_attributes=True) for r in rows]

    async def delete_linked_transaction(self, link_id: UUID) -> bool:
        async with self._session() as session:
            result = await session.execute(
                delete(LinkedTransactionRow).where(LinkedTransactionRow.id == link_id)
            )
            return result.rowcount > 0

    # --- Account links ---

    async def get_account_links(self, active_only: bool = True) -> list[AccountLink]:
        query = select(AccountLinkRow).order_by(AccountLinkRow.company_name)
        if active_only:
            query = query.where(AccountLinkRow.active.is_(True))
        async with self._session() as session:
            rows = await session.scalars(query)
            return [AccountLink.model_validate(r, from_attributes=True) for r in rows]

    async def save_account_link(self, link: AccountLink) -> AccountLink:
        async with self._session() as session:
            await session.merge(AccountLinkRow(**_columns(link)))
        return link

    async def get_company_account_links(self, active_only: bool = True) -> list[CompanyAccountLink]:
        query = select(CompanyAccountLinkRow).order_by(CompanyAccountLinkRow.name_1)
        if active_only:
            query = query.where(CompanyAccountLinkRow.active.is_(True))
        async with self._session() as session:
            rows = await session.scalars(query)
            return [CompanyAccountLink.model_validate(r, from_attributes=True) for r in rows]

    async def save_company_account_link(self, link: CompanyAccountLink) -> CompanyAccountLink:
        async with self._session() as session:
            await session.merge(CompanyAccountLinkRow(**_columns(link)))
        return link

    # --- Exchange rates ---

    async def get_exchange_rate(
        self,
        month: str,
        base_currency: str,
        quote_currency: str,
    ) -> Optional[Decimal]:
        async with self._session() as session:
            row = await session.get(
                ExchangeRateRow,
                (month, base_currency.upper(), quote_currency.upper()),
            )
            return Decimal(row.rate) if row else None

    async def save_exchange_rate(self, rate: ExchangeRate) -> ExchangeRate:
        async with self._session() as session:
            await session.merge(ExchangeRateRow(**_columns(rate)))
        return rate

    async def list_exchange_rates(self) -> list[ExchangeRate]:
        async with self._session() as session:
            rows = await session.scalars(
                select(ExchangeRateRow).order_by(
                    ExchangeRateRow.month.desc(),
                    ExchangeRateRow.base_currency,
                    ExchangeRateRow.quote_currency,
                )
            )
            return [ExchangeRate.model_validate(r, from_attributes=True) for r in rows]

    # --- Decision log ---

    async def append_log_entry(self, entry: SyncLogEntry) -> bool:
        async with self._session() as session:
            session.add(SyncLogRow(
                id=entry.id,
                run_id=entry.run_id,
                budget_id=entry.budget_id,
                action=entry.action.value,
                transaction_id=entry.transaction_id,
                mirror_transaction_id=entry.mirror_transaction_id,
                details=entry.details.model_dump(mode="json", exclude_none=True),
                error_message=entry.error_message,
                created_at=entry.created_at,
            ))
        return True

    @staticmethod
    def _to_entry(row: SyncLogRow) -> SyncLogEntry:
        return SyncLogEntry(
            id=row.id,
            run_id=row.run_id,
            budget_id=row.budget_id,
            action=row.action,
            transaction_id=row.transaction_id,
            mirror_transaction_id=row.mirror_transaction_id,
            details=row.details,
            error_message=row.error_message,
            created_at=row.created_at,
        )

    async def get_log_entries(self, run_id: UUID) -> list[SyncLogEntry]:
        async with self._session() as session:
            rows = await session.scalars(
                select(SyncLogRow).where(SyncLogRow.run_id == run_id).order_by(SyncLogRow.seq)
            )
            return [self._to_entry(r) for r in rows]

    async def get_recent_log_entries(self, limit: int = 100) -> list[SyncLogEntry]:
        async with self._session() as session:
            rows = await session.scalars(
                select(SyncLogRow).order_by(SyncLogRow.seq.desc()).limit(limit)
            )
            return [self._to_entry(r) for r in rows]
