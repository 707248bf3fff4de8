"""
SQL Stores
==========

SQLAlchemy async implementations of the ingestion stores.

Every call runs in its own session and transaction, so a failed item never
rolls back another item's write.

Version: 0.1.0
"""

from datetime import datetime
from typing import Any

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from services.alert_ingestion.errors import (
    DuplicateAlertError,
    PersistenceError,
    SyncLogClosedError,
)
from services.alert_ingestion.models import (
    Alert,
    AlertFilters,
    DedupAction,
    FreshnessRecord,
    RunStatus,
    SyncCounts,
    SyncLogEntry,
    utc_now,
)
from services.alert_ingestion.store.base import Stores, merge_metadata
from services.alert_ingestion.store.models import AlertModel, FreshnessModel, SyncLogModel
from shared.logging import get_logger
from shared.models import Pagination


logger = get_logger(__name__)

UNIQUE_VIOLATION = "23505"


def is_unique_violation(error: IntegrityError) -> bool:
    """PostgreSQL sqlstate 23505, or the SQLite equivalent message."""
    orig = error.orig
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if code == UNIQUE_VIOLATION:
        return True
    message = str(orig)
    return "UNIQUE constraint failed" in message or "duplicate key" in message


class SqlAlertStore:
    """AlertStore backed by the `alerts` table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def find_by_identity_key(
        self, source: str, identity_key: str, window_start: datetime
    ) -> Alert | None:
        stmt = (
            select(AlertModel)
            .where(
                AlertModel.source == source,
                AlertModel.identity_key == identity_key,
                AlertModel.ingested_at >= window_start,
            )
            .order_by(AlertModel.ingested_at.desc())
            .limit(1)
        )
        try:
            async with self._session_factory() as session:
                row = (await session.execute(stmt)).scalar_one_or_none()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Alert lookup failed: {e}") from e
        return row.to_domain() if row else None

    async def insert(self, alert: Alert) -> Alert:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    session.add(AlertModel.from_domain(alert))
        except IntegrityError as e:
            if is_unique_violation(e):
                raise DuplicateAlertError(
                    f"Alert {alert.source}/{alert.identity_key} already exists"
                ) from e
            raise PersistenceError(f"Alert insert failed: {e}") from e
        except SQLAlchemyError as e:
            raise PersistenceError(f"Alert insert failed: {e}") from e
        return alert

    async def update_mutable(
        self,
        alert_id: str,
        summary: str,
        raw_payload: dict[str, Any],
        updated_at: datetime,
    ) -> None:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    row = await session.get(AlertModel, alert_id)
                    if row is None:
                        raise PersistenceError(f"Alert {alert_id} not found")
                    row.summary = summary
                    row.raw_payload = raw_payload
                    row.updated_at = updated_at
        except SQLAlchemyError as e:
            raise PersistenceError(f"Alert update failed: {e}") from e

    async def upsert(self, alert: Alert, existing_id: str | None = None) -> DedupAction:
        if existing_id is None:
            await self.insert(alert)
            return DedupAction.INSERT
        await self.update_mutable(
            existing_id, alert.summary, alert.raw_payload, alert.updated_at or utc_now()
        )
        return DedupAction.UPDATE

    async def query(
        self, filters: AlertFilters, pagination: Pagination
    ) -> tuple[list[Alert], int]:
        conditions = []
        if filters.source:
            conditions.append(AlertModel.source == filters.source)
        if filters.agency:
            conditions.append(AlertModel.agency == filters.agency)
        if filters.category:
            conditions.append(AlertModel.category == filters.category)
        if filters.urgency:
            conditions.append(AlertModel.urgency == filters.urgency.value)
        if filters.since:
            conditions.append(AlertModel.published_date >= filters.since)
        if filters.search:
            pattern = f"%{filters.search}%"
            conditions.append(
                or_(AlertModel.title.ilike(pattern), AlertModel.summary.ilike(pattern))
            )

        count_stmt = select(func.count()).select_from(AlertModel).where(*conditions)
        page_stmt = (
            select(AlertModel)
            .where(*conditions)
            .order_by(AlertModel.published_date.desc(), AlertModel.ingested_at.desc())
            .offset(pagination.offset)
            .limit(pagination.limit)
        )
        try:
            async with self._session_factory() as session:
                total = (await session.execute(count_stmt)).scalar_one()
                rows = (await session.execute(page_stmt)).scalars().all()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Alert query failed: {e}") from e
        return [row.to_domain() for row in rows], total


class SqlFreshnessStore:
    """FreshnessStore backed by the `data_freshness` table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get(self, source_name: str) -> FreshnessRecord | None:
        try:
            async with self._session_factory() as session:
                row = await session.get(FreshnessModel, source_name)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Freshness lookup failed: {e}") from e
        return row.to_domain() if row else None

    async def upsert(self, source_name: str, record: FreshnessRecord) -> FreshnessRecord:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    row = await session.get(FreshnessModel, source_name)
                    if row is None:
                        row = FreshnessModel(source_name=source_name)
                        session.add(row)
                    row.apply(record)
                    stored = row.to_domain()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Freshness upsert failed: {e}") from e
        return stored

    async def list_all(self) -> list[FreshnessRecord]:
        stmt = select(FreshnessModel).order_by(FreshnessModel.source_name)
        try:
            async with self._session_factory() as session:
                rows = (await session.execute(stmt)).scalars().all()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Freshness listing failed: {e}") from e
        return [row.to_domain() for row in rows]


class SqlSyncLogStore:
    """SyncLogStore backed by the `alert_sync_logs` table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def start(self, source_scope: str, metadata: dict[str, Any]) -> SyncLogEntry:
        entry = SyncLogEntry(source_scope=source_scope, started_at=utc_now(), metadata=metadata)
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    session.add(
                        SyncLogModel(
                            id=entry.id,
                            source_scope=entry.source_scope,
                            status=entry.status.value,
                            errors=[],
                            metadata_=entry.metadata,
                            started_at=entry.started_at,
                        )
                    )
        except SQLAlchemyError as e:
            raise PersistenceError(f"Sync log start failed: {e}") from e
        return entry

    async def finish(
        self,
        log_id: str,
        status: RunStatus,
        counts: SyncCounts,
        errors: list[dict[str, Any]],
        metadata: dict[str, Any],
    ) -> SyncLogEntry:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    row = await session.get(SyncLogModel, log_id, with_for_update=True)
                    if row is None:
                        raise LookupError(f"Sync log {log_id} not found")
                    if row.status != RunStatus.RUNNING.value:
                        raise SyncLogClosedError(f"Sync log {log_id} is already {row.status}")
                    row.status = status.value
                    row.fetched = counts.fetched
                    row.inserted = counts.inserted
                    row.updated = counts.updated
                    row.skipped = counts.skipped
                    row.errors = errors
                    row.metadata_ = merge_metadata(row.metadata_ or {}, metadata)
                    row.finished_at = utc_now()
                    entry = row.to_domain()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Sync log finish failed: {e}") from e
        return entry

    async def get(self, log_id: str) -> SyncLogEntry | None:
        try:
            async with self._session_factory() as session:
                row = await session.get(SyncLogModel, log_id)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Sync log lookup failed: {e}") from e
        return row.to_domain() if row else None

    async def list_recent(self, limit: int = 20) -> list[SyncLogEntry]:
        stmt = select(SyncLogModel).order_by(SyncLogModel.started_at.desc()).limit(limit)
        try:
            async with self._session_factory() as session:
                rows = (await session.execute(stmt)).scalars().all()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Sync log listing failed: {e}") from e
        return [row.to_domain() for row in rows]


def sql_stores(session_factory: async_sessionmaker[AsyncSession]) -> Stores:
    """All three stores sharing one session factory."""
    return Stores(
        alerts=SqlAlertStore(session_factory),
        freshness=SqlFreshnessStore(session_factory),
        sync_logs=SqlSyncLogStore(session_factory),
    )
