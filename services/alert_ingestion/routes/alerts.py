"""
Alert Routes
============

Read access to ingested alerts for the dashboard.

Version: 0.1.0
"""

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from services.alert_ingestion.dependencies import IngestionService, get_service
from services.alert_ingestion.models import Alert, AlertFilters, Urgency, ensure_utc
from shared.models import PaginatedResponse, Pagination


router = APIRouter()


class AlertView(BaseModel):
    """Alert as returned to the dashboard."""

    id: str
    title: str
    summary: str
    source: str
    agency: str
    category: str
    region: str
    urgency: Urgency
    published_date: datetime
    external_url: str
    external_id: str | None
    ingested_at: datetime
    updated_at: datetime | None
    raw_payload: dict[str, Any]

    @classmethod
    def from_alert(cls, alert: Alert) -> "AlertView":
        return cls(
            id=alert.id,
            title=alert.title,
            summary=alert.summary,
            source=alert.source,
            agency=alert.agency,
            category=alert.category,
            region=alert.region,
            urgency=alert.urgency,
            published_date=alert.published_date,
            external_url=alert.external_url,
            external_id=alert.external_id,
            ingested_at=alert.ingested_at,
            updated_at=alert.updated_at,
            raw_payload=alert.raw_payload,
        )


@router.get("", response_model=PaginatedResponse[AlertView])
async def list_alerts(
    source: str | None = Query(default=None, description="Filter by source name"),
    agency: str | None = Query(default=None, description="Filter by agency"),
    category: str | None = Query(default=None, description="Filter by category"),
    urgency: Urgency | None = Query(default=None, description="Filter by urgency"),
    since: datetime | None = Query(default=None, description="Published on or after"),
    search: str | None = Query(default=None, min_length=2, description="Title/summary text"),
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=100),
    service: IngestionService = Depends(get_service),
) -> PaginatedResponse[AlertView]:
    """List alerts, newest published first."""
    filters = AlertFilters(
        source=source,
        agency=agency,
        category=category,
        urgency=urgency,
        since=ensure_utc(since),
        search=search,
    )
    pagination = Pagination(page=page, page_size=page_size)
    alerts, total = await service.stores.alerts.query(filters, pagination)
    return PaginatedResponse[AlertView].build(
        [AlertView.from_alert(a) for a in alerts], total, pagination
    )
