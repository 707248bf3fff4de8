"""
In-Memory Stores
================

Dictionary-backed stores with the same semantics as the SQL ones,
including the (source, identity_key, dedup_bucket) uniqueness rule.
Used for local development (INGESTION_STORAGE=memory) and tests.

Version: 0.1.0
"""

import asyncio
import copy
from datetime import datetime
from typing import Any

from services.alert_ingestion.errors import (
    DuplicateAlertError,
    PersistenceError,
    SyncLogClosedError,
)
from services.alert_ingestion.models import (
    Alert,
    AlertFilters,
    DedupAction,
    FetchStatus,
    FreshnessRecord,
    RunStatus,
    SyncCounts,
    SyncLogEntry,
    utc_now,
)
from services.alert_ingestion.store.base import Stores, merge_metadata
from shared.models import Pagination


class MemoryAlertStore:
    """AlertStore kept in a dict keyed by alert id."""

    def __init__(self) -> None:
        self._alerts: dict[str, Alert] = {}
        self._unique: set[tuple[str, str, int]] = set()
        self._lock = asyncio.Lock()

    @property
    def alerts(self) -> list[Alert]:
        return list(self._alerts.values())

    async def find_by_identity_key(
        self, source: str, identity_key: str, window_start: datetime
    ) -> Alert | None:
        matches = [
            a
            for a in self._alerts.values()
            if a.source == source
            and a.identity_key == identity_key
            and a.ingested_at >= window_start
        ]
        if not matches:
            return None
        return copy.deepcopy(max(matches, key=lambda a: a.ingested_at))

    async def insert(self, alert: Alert) -> Alert:
        key = (alert.source, alert.identity_key, alert.dedup_bucket)
        async with self._lock:
            if key in self._unique:
                raise DuplicateAlertError(
                    f"Alert {alert.source}/{alert.identity_key} already exists"
                )
            self._unique.add(key)
            self._alerts[alert.id] = copy.deepcopy(alert)
        return alert

    async def update_mutable(
        self,
        alert_id: str,
        summary: str,
        raw_payload: dict[str, Any],
        updated_at: datetime,
    ) -> None:
        async with self._lock:
            alert = self._alerts.get(alert_id)
            if alert is None:
                raise PersistenceError(f"Alert {alert_id} not found")
            alert.summary = summary
            alert.raw_payload = copy.deepcopy(raw_payload)
            alert.updated_at = updated_at

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
        def matches(alert: Alert) -> bool:
            if filters.source and alert.source != filters.source:
                return False
            if filters.agency and alert.agency != filters.agency:
                return False
            if filters.category and alert.category != filters.category:
                return False
            if filters.urgency and alert.urgency != filters.urgency:
                return False
            if filters.since and alert.published_date < filters.since:
                return False
            if filters.search:
                needle = filters.search.lower()
                if needle not in alert.title.lower() and needle not in alert.summary.lower():
                    return False
            return True

        selected = sorted(
            (a for a in self._alerts.values() if matches(a)),
            key=lambda a: (a.published_date, a.ingested_at),
            reverse=True,
        )
        page = selected[pagination.offset : pagination.offset + pagination.limit]
        return [copy.deepcopy(a) for a in page], len(selected)


class MemoryFreshnessStore:
    """FreshnessStore kept in a dict keyed by source name."""

    def __init__(self) -> None:
        self._records: dict[str, FreshnessRecord] = {}

    async def get(self, source_name: str) -> FreshnessRecord | None:
        record = self._records.get(source_name)
        return copy.deepcopy(record) if record else None

    async def upsert(self, source_name: str, record: FreshnessRecord) -> FreshnessRecord:
        stored = copy.deepcopy(record)
        existing = self._records.get(source_name)
        if (
            existing is not None
            and existing.last_successful_fetch is not None
            and record.fetch_status != FetchStatus.SUCCESS
        ):
            stored.last_successful_fetch = existing.last_successful_fetch
        self._records[source_name] = stored
        return copy.deepcopy(stored)

    async def list_all(self) -> list[FreshnessRecord]:
        return [copy.deepcopy(self._records[name]) for name in sorted(self._records)]


class MemorySyncLogStore:
    """SyncLogStore kept in insertion order."""

    def __init__(self) -> None:
        self._entries: dict[str, SyncLogEntry] = {}

    async def start(self, source_scope: str, metadata: dict[str, Any]) -> SyncLogEntry:
        entry = SyncLogEntry(
            source_scope=source_scope, started_at=utc_now(), metadata=dict(metadata)
        )
        self._entries[entry.id] = entry
        return copy.deepcopy(entry)

    async def finish(
        self,
        log_id: str,
        status: RunStatus,
        counts: SyncCounts,
        errors: list[dict[str, Any]],
        metadata: dict[str, Any],
    ) -> SyncLogEntry:
        entry = self._entries.get(log_id)
        if entry is None:
            raise LookupError(f"Sync log {log_id} not found")
        if not entry.is_open:
            raise SyncLogClosedError(f"Sync log {log_id} is already {entry.status.value}")
        entry.status = status
        entry.fetched = counts.fetched
        entry.inserted = counts.inserted
        entry.updated = counts.updated
        entry.skipped = counts.skipped
        entry.errors = copy.deepcopy(errors)
        entry.metadata = merge_metadata(entry.metadata, metadata)
        entry.finished_at = utc_now()
        return copy.deepcopy(entry)

    async def get(self, log_id: str) -> SyncLogEntry | None:
        entry = self._entries.get(log_id)
        return copy.deepcopy(entry) if entry else None

    async def list_recent(self, limit: int = 20) -> list[SyncLogEntry]:
        entries = sorted(self._entries.values(), key=lambda e: e.started_at, reverse=True)
        return [copy.deepcopy(e) for e in entries[:limit]]


def memory_stores() -> Stores:
    return Stores(
        alerts=MemoryAlertStore(),
        freshness=MemoryFreshnessStore(),
        sync_logs=MemorySyncLogStore(),
    )
