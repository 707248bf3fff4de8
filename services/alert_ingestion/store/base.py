"""
Store Interfaces
================

Persistence contracts used by the pipeline. Implementations:
- store.sql:    SQLAlchemy async (PostgreSQL in production)
- store.memory: in-process dictionaries (local development, tests)

Version: 0.1.0
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol

from services.alert_ingestion.models import (
    Alert,
    AlertFilters,
    DedupAction,
    FreshnessRecord,
    RunStatus,
    SyncCounts,
    SyncLogEntry,
)
from shared.models import Pagination


class AlertStore(Protocol):
    """Canonical alert persistence."""

    async def find_by_identity_key(
        self, source: str, identity_key: str, window_start: datetime
    ) -> Alert | None:
        """Newest alert with this key first ingested at or after window_start."""
        ...

    async def insert(self, alert: Alert) -> Alert:
        """
        Insert a new alert.

        Raises:
            DuplicateAlertError: (source, identity_key, dedup_bucket) already exists
            PersistenceError: any other write failure
        """
        ...

    async def update_mutable(
        self,
        alert_id: str,
        summary: str,
        raw_payload: dict[str, Any],
        updated_at: datetime,
    ) -> None:
        """Refresh the fields a re-observed notice may change."""
        ...

    async def upsert(self, alert: Alert, existing_id: str | None = None) -> DedupAction:
        """Insert, or update the mutable fields of existing_id."""
        ...

    async def query(
        self, filters: AlertFilters, pagination: Pagination
    ) -> tuple[list[Alert], int]:
        """One page of alerts, newest published first, plus the total."""
        ...


class FreshnessStore(Protocol):
    """Per-source fetch health, keyed by source name."""

    async def get(self, source_name: str) -> FreshnessRecord | None: ...

    async def upsert(self, source_name: str, record: FreshnessRecord) -> FreshnessRecord:
        """
        Write the latest outcome and return the stored record.

        A failed attempt keeps the stored `last_successful_fetch`.
        """
        ...

    async def list_all(self) -> list[FreshnessRecord]: ...


class SyncLogStore(Protocol):
    """Append-only run history."""

    async def start(self, source_scope: str, metadata: dict[str, Any]) -> SyncLogEntry: ...

    async def finish(
        self,
        log_id: str,
        status: RunStatus,
        counts: SyncCounts,
        errors: list[dict[str, Any]],
        metadata: dict[str, Any],
    ) -> SyncLogEntry:
        """
        Close an entry.

        Raises:
            SyncLogClosedError: the entry is already closed
            LookupError: no entry with this id
        """
        ...

    async def get(self, log_id: str) -> SyncLogEntry | None: ...

    async def list_recent(self, limit: int = 20) -> list[SyncLogEntry]: ...


@dataclass
class Stores:
    """The three stores the pipeline writes to."""

    alerts: AlertStore
    freshness: FreshnessStore
    sync_logs: SyncLogStore


def merge_metadata(current: dict[str, Any], extra: dict[str, Any]) -> dict[str, Any]:
    merged = dict(current)
    merged.update(extra)
    return merged
