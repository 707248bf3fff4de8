"""
Ingestion Database Models
=========================

SQLAlchemy ORM models for alerts, source freshness and sync logs.

Version: 0.1.0
"""

import uuid

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)

from services.alert_ingestion.models import (
    Alert,
    EndpointRole,
    FetchStatus,
    FreshnessRecord,
    RunStatus,
    SyncLogEntry,
    Urgency,
    ensure_utc,
)
from shared.database.postgres import Base


def _uuid() -> str:
    return str(uuid.uuid4())


class AlertModel(Base):
    """
    SQLAlchemy model for ingested regulatory alerts.

    Uniqueness on (source, identity_key, dedup_bucket) lets the same notice
    reappear once its dedup window has passed.
    """

    __tablename__ = "alerts"
    __table_args__ = (
        UniqueConstraint(
            "source", "identity_key", "dedup_bucket", name="uq_alerts_source_identity_bucket"
        ),
        Index("ix_alerts_source_identity", "source", "identity_key", "ingested_at"),
        Index("ix_alerts_published", "published_date"),
        Index("ix_alerts_agency", "agency"),
        Index("ix_alerts_urgency", "urgency"),
    )

    # Primary key
    id = Column(String(36), primary_key=True, default=_uuid)

    # Identity
    identity_key = Column(String(128), nullable=False)
    external_id = Column(String(255))
    dedup_bucket = Column(Integer, nullable=False, default=0)

    # Content
    title = Column(String(500), nullable=False)
    summary = Column(Text, nullable=False, default="")
    external_url = Column(Text, nullable=False)

    # Classification
    source = Column(String(100), nullable=False)
    agency = Column(String(50), nullable=False)
    category = Column(String(100), nullable=False)
    region = Column(String(20), nullable=False, default="US")
    urgency = Column(String(20), nullable=False, default=Urgency.LOW.value)

    # Dates
    published_date = Column(DateTime(timezone=True), nullable=False)
    ingested_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True))

    # Original fragment
    raw_payload = Column(JSON, default=dict)

    def __repr__(self) -> str:
        return f"<Alert {self.id}: {self.source} {self.identity_key}>"

    @classmethod
    def from_domain(cls, alert: Alert) -> "AlertModel":
        return cls(
            id=alert.id,
            identity_key=alert.identity_key,
            external_id=alert.external_id,
            dedup_bucket=alert.dedup_bucket,
            title=alert.title,
            summary=alert.summary,
            external_url=alert.external_url,
            source=alert.source,
            agency=alert.agency,
            category=alert.category,
            region=alert.region,
            urgency=alert.urgency.value,
            published_date=alert.published_date,
            ingested_at=alert.ingested_at,
            updated_at=alert.updated_at,
            raw_payload=alert.raw_payload,
        )

    def to_domain(self) -> Alert:
        return Alert(
            id=self.id,
            identity_key=self.identity_key,
            external_id=self.external_id,
            dedup_bucket=self.dedup_bucket,
            title=self.title,
            summary=self.summary,
            external_url=self.external_url,
            source=self.source,
            agency=self.agency,
            category=self.category,
            region=self.region,
            urgency=Urgency(self.urgency),
            published_date=ensure_utc(self.published_date),
            ingested_at=ensure_utc(self.ingested_at),
            updated_at=ensure_utc(self.updated_at),
            raw_payload=self.raw_payload or {},
        )


class FreshnessModel(Base):
    """One row per source with its latest fetch outcome."""

    __tablename__ = "data_freshness"

    source_name = Column(String(100), primary_key=True)
    last_successful_fetch = Column(DateTime(timezone=True))
    last_attempt = Column(DateTime(timezone=True), nullable=False)
    fetch_status = Column(String(20), nullable=False)
    records_fetched = Column(Integer, nullable=False, default=0)
    error_message = Column(Text)
    endpoint_used = Column(String(20))

    def to_domain(self) -> FreshnessRecord:
        return FreshnessRecord(
            source_name=self.source_name,
            last_successful_fetch=ensure_utc(self.last_successful_fetch),
            last_attempt=ensure_utc(self.last_attempt),
            fetch_status=FetchStatus(self.fetch_status),
            records_fetched=self.records_fetched or 0,
            error_message=self.error_message,
            endpoint_used=EndpointRole(self.endpoint_used) if self.endpoint_used else None,
        )

    def apply(self, record: FreshnessRecord) -> None:
        # A failed attempt never clears a known last success.
        if record.fetch_status == FetchStatus.SUCCESS or self.last_successful_fetch is None:
            self.last_successful_fetch = record.last_successful_fetch
        self.last_attempt = record.last_attempt
        self.fetch_status = record.fetch_status.value
        self.records_fetched = record.records_fetched
        self.error_message = record.error_message
        self.endpoint_used = record.endpoint_used.value if record.endpoint_used else None


class SyncLogModel(Base):
    """Audit row for one pipeline invocation."""

    __tablename__ = "alert_sync_logs"
    __table_args__ = (Index("ix_alert_sync_logs_started", "started_at"),)

    id = Column(String(36), primary_key=True, default=_uuid)
    source_scope = Column(String(100), nullable=False)
    status = Column(String(20), nullable=False, default=RunStatus.RUNNING.value)

    # Counts
    fetched = Column(Integer, nullable=False, default=0)
    inserted = Column(Integer, nullable=False, default=0)
    updated = Column(Integer, nullable=False, default=0)
    skipped = Column(Integer, nullable=False, default=0)

    errors = Column(JSON, default=list)
    metadata_ = Column("metadata", JSON, default=dict)

    started_at = Column(DateTime(timezone=True), nullable=False)
    finished_at = Column(DateTime(timezone=True))

    def to_domain(self) -> SyncLogEntry:
        return SyncLogEntry(
            id=self.id,
            source_scope=self.source_scope,
            status=RunStatus(self.status),
            fetched=self.fetched or 0,
            inserted=self.inserted or 0,
            updated=self.updated or 0,
            skipped=self.skipped or 0,
            errors=list(self.errors or []),
            started_at=ensure_utc(self.started_at),
            finished_at=ensure_utc(self.finished_at),
            metadata=dict(self.metadata_ or {}),
        )
