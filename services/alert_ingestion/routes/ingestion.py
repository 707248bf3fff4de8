"""
Ingestion Routes
================

Run the pipeline and inspect sources, freshness and sync history.

Version: 0.1.0
"""

from datetime import datetime, timedelta
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel

from services.alert_ingestion.commands import IngestionCommand
from services.alert_ingestion.dependencies import IngestionService, get_service
from services.alert_ingestion.models import (
    EndpointRole,
    FetchStatus,
    FreshnessRecord,
    RunStatus,
    SyncLogEntry,
    utc_now,
)
from services.alert_ingestion.pipeline import RunResult
from shared.logging import get_logger


logger = get_logger(__name__)

router = APIRouter()


class FreshnessView(BaseModel):
    """Freshness record with computed staleness."""

    source_name: str
    last_successful_fetch: datetime | None
    last_attempt: datetime
    fetch_status: FetchStatus
    records_fetched: int
    error_message: str | None
    endpoint_used: EndpointRole | None
    staleness_hours: float | None
    is_stale: bool

    @classmethod
    def from_record(
        cls, record: FreshnessRecord, threshold_hours: float, now: datetime
    ) -> "FreshnessView":
        age = record.staleness(now)
        return cls(
            source_name=record.source_name,
            last_successful_fetch=record.last_successful_fetch,
            last_attempt=record.last_attempt,
            fetch_status=record.fetch_status,
            records_fetched=record.records_fetched,
            error_message=record.error_message,
            endpoint_used=record.endpoint_used,
            staleness_hours=round(age.total_seconds() / 3600, 2) if age is not None else None,
            is_stale=record.is_stale(timedelta(hours=threshold_hours), now),
        )


class SyncLogView(BaseModel):
    """One run of the pipeline."""

    id: str
    source_scope: str
    status: RunStatus
    fetched: int
    inserted: int
    updated: int
    skipped: int
    errors: list[dict[str, Any]]
    started_at: datetime
    finished_at: datetime | None
    metadata: dict[str, Any]

    @classmethod
    def from_entry(cls, entry: SyncLogEntry) -> "SyncLogView":
        return cls(
            id=entry.id,
            source_scope=entry.source_scope,
            status=entry.status,
            fetched=entry.fetched,
            inserted=entry.inserted,
            updated=entry.updated,
            skipped=entry.skipped,
            errors=entry.errors,
            started_at=entry.started_at,
            finished_at=entry.finished_at,
            metadata=entry.metadata,
        )


@router.post("/run", response_model=RunResult)
async def run_ingestion(
    command: IngestionCommand,
    service: IngestionService = Depends(get_service),
) -> RunResult:
    """
    Run the ingestion pipeline.

    Blocks until the run finishes. Source failures are reported in the
    result, not as HTTP errors.
    """
    return await service.dispatcher.dispatch(command)


@router.get("/sources")
async def list_sources(
    enabled_only: bool = Query(default=False),
    service: IngestionService = Depends(get_service),
) -> dict[str, Any]:
    """List configured sources."""
    sources = service.registry.enabled() if enabled_only else service.registry.all()
    return {
        "sources": [s.summary() for s in sources],
        "total": len(sources),
    }


@router.get("/freshness", response_model=list[FreshnessView])
async def list_freshness(
    service: IngestionService = Depends(get_service),
) -> list[FreshnessView]:
    """Freshness of every source that has been attempted at least once."""
    threshold = service.settings.ingestion.staleness_hours
    now = utc_now()
    records = await service.stores.freshness.list_all()
    return [FreshnessView.from_record(r, threshold, now) for r in records]


@router.get("/freshness/{source_name}", response_model=FreshnessView)
async def get_freshness(
    source_name: str,
    service: IngestionService = Depends(get_service),
) -> FreshnessView:
    """Freshness of one source."""
    service.registry.get(source_name)
    record = await service.stores.freshness.get(source_name)
    if record is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No fetch recorded yet for source: {source_name}",
        )
    return FreshnessView.from_record(record, service.settings.ingestion.staleness_hours, utc_now())


@router.get("/sync-logs", response_model=list[SyncLogView])
async def list_sync_logs(
    limit: int = Query(default=20, ge=1, le=200),
    service: IngestionService = Depends(get_service),
) -> list[SyncLogView]:
    """Most recent runs, newest first."""
    entries = await service.stores.sync_logs.list_recent(limit)
    return [SyncLogView.from_entry(e) for e in entries]
