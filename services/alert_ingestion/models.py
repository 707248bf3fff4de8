"""
Ingestion Domain Models
=======================

Records that flow through the pipeline and the stores:
- Draft: shape-independent output of a parser
- Alert: canonical ingested record
- FreshnessRecord: per-source fetch health
- SyncLogEntry: one row per pipeline invocation

Version: 0.1.0
"""

import uuid
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any


class Urgency(str, Enum):
    """Alert severity tier."""

    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"


class PayloadShape(str, Enum):
    """Declared shape of a source endpoint's payload."""

    JSON_API = "json_api"
    FEED = "feed"
    HTML = "html"


class EndpointRole(str, Enum):
    """Which of a source's endpoints served a payload."""

    PRIMARY = "primary"
    FALLBACK = "fallback"


class FetchStatus(str, Enum):
    """Outcome recorded on a FreshnessRecord."""

    SUCCESS = "success"
    ERROR = "error"


class RunStatus(str, Enum):
    """Sync log state machine: running -> success | error."""

    RUNNING = "running"
    SUCCESS = "success"
    ERROR = "error"


class SourceStatus(str, Enum):
    """Per-source outcome inside one run."""

    SUCCESS = "success"
    ERROR = "error"
    BUSY = "busy"
    CANCELLED = "cancelled"


class DedupAction(str, Enum):
    """What the deduplicator did with an alert."""

    INSERT = "insert"
    UPDATE = "update"
    SKIP = "skip"


def utc_now() -> datetime:
    """Current time, timezone-aware UTC."""
    return datetime.now(UTC)


def ensure_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes (some drivers drop tzinfo on read)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


@dataclass
class Draft:
    """A single item extracted from a payload, before normalization."""

    title: str
    description: str = ""
    link: str | None = None
    raw_date: str | None = None
    external_id: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def text(self) -> str:
        """Text searched by the relevance filter and urgency classifier."""
        return f"{self.title} {self.description}"


@dataclass
class Alert:
    """Canonical regulatory alert."""

    identity_key: str
    title: str
    summary: str
    source: str
    agency: str
    category: str
    region: str
    urgency: Urgency
    published_date: datetime
    external_url: str
    ingested_at: datetime
    external_id: str | None = None
    raw_payload: dict[str, Any] = field(default_factory=dict)
    updated_at: datetime | None = None
    dedup_bucket: int = 0
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def to_dict(self) -> dict[str, Any]:
        """JSON-friendly representation."""
        data = asdict(self)
        data["urgency"] = self.urgency.value
        for key in ("published_date", "ingested_at", "updated_at"):
            value = data[key]
            data[key] = value.isoformat() if value else None
        return data


@dataclass
class AlertFilters:
    """Dashboard query filters."""

    source: str | None = None
    agency: str | None = None
    category: str | None = None
    urgency: Urgency | None = None
    since: datetime | None = None
    search: str | None = None


@dataclass
class FreshnessRecord:
    """Fetch health of one source; upserted by source name."""

    source_name: str
    last_attempt: datetime
    fetch_status: FetchStatus
    records_fetched: int = 0
    last_successful_fetch: datetime | None = None
    error_message: str | None = None
    endpoint_used: EndpointRole | None = None

    def staleness(self, now: datetime | None = None) -> timedelta | None:
        """Time since the last successful fetch, or None if there never was one."""
        if self.last_successful_fetch is None:
            return None
        return (now or utc_now()) - ensure_utc(self.last_successful_fetch)

    def is_stale(self, threshold: timedelta, now: datetime | None = None) -> bool:
        age = self.staleness(now)
        return age is not None and age > threshold


@dataclass
class SyncCounts:
    """Aggregated item counts written on a sync log entry."""

    fetched: int = 0
    inserted: int = 0
    updated: int = 0
    skipped: int = 0

    def add(self, other: "SyncCounts") -> None:
        self.fetched += other.fetched
        self.inserted += other.inserted
        self.updated += other.updated
        self.skipped += other.skipped


@dataclass
class SyncLogEntry:
    """Audit record of one pipeline invocation."""

    source_scope: str
    started_at: datetime
    status: RunStatus = RunStatus.RUNNING
    fetched: int = 0
    inserted: int = 0
    updated: int = 0
    skipped: int = 0
    errors: list[dict[str, Any]] = field(default_factory=list)
    finished_at: datetime | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    @property
    def is_open(self) -> bool:
        return self.status == RunStatus.RUNNING
