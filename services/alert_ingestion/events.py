"""
Ingestion Events
================

In-process event channel for the pipeline.

The pipeline publishes what happens; subscribers decide what to do with it:
- ErrorCollector gathers structured errors for the sync log
- structlog_sink emits every event as a log line

Version: 0.1.0
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from services.alert_ingestion.errors import IngestionError
from services.alert_ingestion.models import utc_now
from shared.logging import get_logger


logger = get_logger("services.alert_ingestion.events")


class EventType(str, Enum):
    """Pipeline event names."""

    RUN_STARTED = "ingestion_run_started"
    RUN_FINISHED = "ingestion_run_finished"
    SOURCE_STARTED = "source_started"
    SOURCE_FETCHED = "source_fetched"
    SOURCE_FINISHED = "source_finished"
    SOURCE_FAILED = "source_fetch_failed"
    SOURCE_SKIPPED = "source_skipped"
    ITEM_FAILED = "alert_item_failed"
    FRESHNESS_FAILED = "freshness_write_failed"


ERROR_EVENTS = {EventType.SOURCE_FAILED, EventType.ITEM_FAILED, EventType.FRESHNESS_FAILED}


@dataclass
class IngestionEvent:
    """Something that happened during a run."""

    type: EventType
    source: str | None = None
    error: Exception | None = None
    data: dict[str, Any] = field(default_factory=dict)
    at: datetime = field(default_factory=utc_now)


Subscriber = Callable[[IngestionEvent], None]


class IngestionEvents:
    """Synchronous publish/subscribe channel."""

    def __init__(self) -> None:
        self._subscribers: list[Subscriber] = []

    def subscribe(self, subscriber: Subscriber) -> Callable[[], None]:
        """Register a subscriber; returns a function that removes it."""
        self._subscribers.append(subscriber)

        def unsubscribe() -> None:
            if subscriber in self._subscribers:
                self._subscribers.remove(subscriber)

        return unsubscribe

    def publish(self, event: IngestionEvent) -> None:
        for subscriber in list(self._subscribers):
            try:
                subscriber(event)
            except Exception as e:
                # A broken observer must not break ingestion
                logger.error(
                    "event_subscriber_failed",
                    event_type=event.type.value,
                    subscriber=getattr(subscriber, "__name__", repr(subscriber)),
                    error=str(e),
                )

    def emit(
        self,
        type: EventType,
        source: str | None = None,
        error: Exception | None = None,
        **data: Any,
    ) -> None:
        self.publish(IngestionEvent(type=type, source=source, error=error, data=data))


def error_entry(event: IngestionEvent) -> dict[str, Any]:
    """Structured sync log form of an error event."""
    error = event.error
    if isinstance(error, IngestionError):
        entry = error.to_dict()
    else:
        entry = {
            "kind": "unexpected",
            "error_type": type(error).__name__ if error else "Unknown",
            "message": str(error) if error else event.data.get("message", ""),
        }
    entry["source"] = event.source
    entry["at"] = event.at.isoformat()
    if "identity_key" in event.data:
        entry["identity_key"] = event.data["identity_key"]
    return entry


class ErrorCollector:
    """Collects error events of one run."""

    def __init__(self) -> None:
        self.errors: list[dict[str, Any]] = []

    def __call__(self, event: IngestionEvent) -> None:
        if event.type in ERROR_EVENTS:
            self.errors.append(error_entry(event))


def structlog_sink(event: IngestionEvent) -> None:
    """Log every pipeline event."""
    fields = {k: v for k, v in event.data.items() if v is not None}
    if event.source:
        fields["source"] = event.source
    if event.error is not None:
        fields["error"] = str(event.error)
        fields["error_type"] = type(event.error).__name__
        logger.warning(event.type.value, **fields)
    elif event.type == EventType.SOURCE_SKIPPED:
        logger.warning(event.type.value, **fields)
    else:
        logger.info(event.type.value, **fields)
