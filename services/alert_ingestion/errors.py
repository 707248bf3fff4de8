"""
Ingestion Errors
================

Exception hierarchy for the alert ingestion pipeline.

Failures are contained at the smallest possible unit:
- item:   ValidationError, DuplicateAlertError, PersistenceError
- source: FetchError, ParseError, SourceBusyError
- run:    AllSourcesFailed

Version: 0.1.0
"""

from dataclasses import dataclass
from typing import Any


class IngestionError(Exception):
    """Base class for every pipeline error."""

    kind = "ingestion"

    def to_dict(self) -> dict[str, Any]:
        """Structured form recorded in the sync log."""
        return {
            "kind": self.kind,
            "error_type": type(self).__name__,
            "message": str(self),
        }


@dataclass
class EndpointFailure:
    """One exhausted endpoint inside a FetchError."""

    endpoint: str
    url: str
    message: str
    status_code: int | None = None
    attempts: int = 0


class FetchError(IngestionError):
    """Network failure, timeout, or non-retryable HTTP status."""

    kind = "fetch"

    def __init__(
        self,
        message: str,
        *,
        url: str | None = None,
        status_code: int | None = None,
        attempts: int = 0,
        failures: list[EndpointFailure] | None = None,
    ) -> None:
        super().__init__(message)
        self.url = url
        self.status_code = status_code
        self.attempts = attempts
        self.failures = failures or []

    @property
    def retryable(self) -> bool:
        """429, 5xx and transport-level errors (no status) may be retried."""
        if self.status_code is None:
            return True
        return self.status_code == 429 or self.status_code >= 500

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["url"] = self.url
        data["status_code"] = self.status_code
        if self.failures:
            data["endpoints"] = [
                {
                    "endpoint": f.endpoint,
                    "url": f.url,
                    "status_code": f.status_code,
                    "attempts": f.attempts,
                    "message": f.message,
                }
                for f in self.failures
            ]
        return data


class ParseError(IngestionError):
    """The whole payload could not be parsed (e.g. broken XML)."""

    kind = "parse"


class ValidationError(IngestionError):
    """A draft is missing a required field."""

    kind = "validation"


class PersistenceError(IngestionError):
    """The store rejected a write."""

    kind = "persistence"


class DuplicateAlertError(PersistenceError):
    """Uniqueness violation on insert; treated as a duplicate, not a failure."""

    kind = "duplicate"


class AllSourcesFailed(IngestionError):
    """Every source in the run's scope failed."""

    kind = "run"

    def __init__(self, sources: list[str]) -> None:
        super().__init__(f"All {len(sources)} source(s) failed: {', '.join(sources)}")
        self.sources = sources


class UnknownSourceError(IngestionError, LookupError):
    """No source with this name is registered."""

    kind = "config"

    def __init__(self, name: str) -> None:
        super().__init__(f"Unknown source: {name}")
        self.name = name


class SourceBusyError(IngestionError):
    """Another run currently holds this source's lease."""

    kind = "busy"

    def __init__(self, name: str) -> None:
        super().__init__(f"Source {name} is already being ingested by another run")
        self.name = name


class SyncLogClosedError(IngestionError):
    """A sync log entry may only be finished once."""

    kind = "sync_log"
