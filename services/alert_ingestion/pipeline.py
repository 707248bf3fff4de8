"""
Ingestion Pipeline
==================

Runs the per-source flow for a set of sources:

    fetch -> parse -> relevance filter -> urgency -> normalize -> dedup/persist

and wraps the run in a sync log entry (running -> success | error).

Failure containment:
- item:   validation and persistence errors are counted, the source goes on
- source: fetch/parse/unexpected errors fail the source, the run goes on
- run:    `error` only when every in-scope source failed

Sources are processed one at a time with a pause between them. Freshness
is written for every processed source, successful or not.

Version: 0.1.0
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from services.alert_ingestion.classification import classify_urgency, is_relevant
from services.alert_ingestion.dedup import Deduplicator
from services.alert_ingestion.errors import (
    AllSourcesFailed,
    IngestionError,
    PersistenceError,
    SourceBusyError,
    ValidationError,
)
from services.alert_ingestion.events import (
    ErrorCollector,
    EventType,
    IngestionEvents,
    structlog_sink,
)
from services.alert_ingestion.fetcher import Fetcher
from services.alert_ingestion.lease import LocalSourceLease, SourceLease
from services.alert_ingestion.models import (
    DedupAction,
    Draft,
    EndpointRole,
    FetchStatus,
    FreshnessRecord,
    RunStatus,
    SourceStatus,
    SyncCounts,
    utc_now,
)
from services.alert_ingestion.normalizer import Normalizer
from services.alert_ingestion.parsers import get_parser
from services.alert_ingestion.sources import SourceConfig
from services.alert_ingestion.store.base import Stores
from shared.config import IngestionSettings
from shared.logging import bind_context, get_logger, unbind_context


logger = get_logger(__name__)

ALL_SOURCES_SCOPE = "ALL"


# =============================================================================
# Results
# =============================================================================


class SourceResult(BaseModel):
    """Outcome of one source within a run."""

    source: str
    agency: str | None = None
    status: SourceStatus = SourceStatus.ERROR
    fetched: int = 0
    inserted: int = 0
    updated: int = 0
    skipped: int = 0
    irrelevant: int = 0
    malformed: int = 0
    errors: int = 0
    endpoint: EndpointRole | None = None
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == SourceStatus.SUCCESS

    def counts(self) -> SyncCounts:
        return SyncCounts(
            fetched=self.fetched,
            inserted=self.inserted,
            updated=self.updated,
            skipped=self.skipped,
        )


class RunResult(BaseModel):
    """Outcome of one invocation."""

    success: bool
    action: str
    total_processed: int = 0
    per_source_results: list[SourceResult] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=utc_now)
    sync_log_id: str | None = None
    status: RunStatus | None = None
    probes: list[dict[str, Any]] | None = None
    message: str | None = None


# =============================================================================
# Pipeline
# =============================================================================


class IngestionPipeline:
    """
    Sequential multi-source ingestion.

    Collaborators are injected so that tests and alternate deployments can
    swap stores, HTTP client and lease implementation.
    """

    def __init__(
        self,
        stores: Stores,
        fetcher: Fetcher,
        config: IngestionSettings | None = None,
        lease: SourceLease | None = None,
        events: IngestionEvents | None = None,
        normalizer: Normalizer | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], datetime] = utc_now,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self.stores = stores
        self.fetcher = fetcher
        self.config = config or IngestionSettings()
        self.lease = lease or LocalSourceLease()
        self.events = events or IngestionEvents()
        self.normalizer = normalizer or Normalizer(self.config.summary_max_length)
        self.deduplicator = Deduplicator(stores.alerts)
        self._sleep = sleep
        self._clock = clock
        self._monotonic = monotonic
        self.events.subscribe(structlog_sink)

    async def run(
        self,
        sources: list[SourceConfig],
        scope: str = ALL_SOURCES_SCOPE,
        action: str = "scrape_all",
        metadata: dict[str, Any] | None = None,
    ) -> RunResult:
        """
        Ingest the given sources and record the run.

        Always returns a RunResult; failures are reported, not raised.
        """
        collector = ErrorCollector()
        unsubscribe = self.events.subscribe(collector)
        started = self._monotonic()
        deadline = started + self.config.run_timeout_seconds
        run_metadata = {"action": action, **(metadata or {})}

        sync_log_id: str | None = None
        try:
            entry = await self.stores.sync_logs.start(scope, run_metadata)
            sync_log_id = entry.id
        except PersistenceError as e:
            logger.error("sync_log_start_failed", scope=scope, error=str(e))

        bind_context(run_id=sync_log_id, scope=scope)
        self.events.emit(EventType.RUN_STARTED, scope=scope, action=action, sources=len(sources))

        results: list[SourceResult] = []
        try:
            for index, source in enumerate(sources):
                if index > 0 and self.config.inter_source_delay_seconds > 0:
                    await self._sleep(self.config.inter_source_delay_seconds)
                if self._monotonic() > deadline:
                    results.append(self._cancelled(source))
                    continue
                results.append(await self.process_source(source))

            succeeded = any(r.succeeded for r in results)
            status = RunStatus.SUCCESS if succeeded else RunStatus.ERROR
            if not succeeded:
                failure = AllSourcesFailed([r.source for r in results])
                collector.errors.append(
                    {**failure.to_dict(), "source": None, "at": self._clock().isoformat()}
                )

            totals = SyncCounts()
            for r in results:
                totals.add(r.counts())
            duration_ms = round((self._monotonic() - started) * 1000, 2)

            if sync_log_id is not None:
                await self._close_sync_log(
                    sync_log_id,
                    status,
                    totals,
                    collector.errors,
                    {
                        "duration_ms": duration_ms,
                        "malformed": sum(r.malformed for r in results),
                        "per_source": [r.model_dump(mode="json") for r in results],
                    },
                )

            total_processed = totals.inserted + totals.updated
            self.events.emit(
                EventType.RUN_FINISHED,
                scope=scope,
                status=status.value,
                total_processed=total_processed,
                inserted=totals.inserted,
                updated=totals.updated,
                skipped=totals.skipped,
                errors=len(collector.errors),
                duration_ms=duration_ms,
            )
            return RunResult(
                success=succeeded,
                action=action,
                total_processed=total_processed,
                per_source_results=results,
                timestamp=self._clock(),
                sync_log_id=sync_log_id,
                status=status,
            )
        finally:
            unsubscribe()
            unbind_context("run_id", "scope")

    async def _close_sync_log(
        self,
        log_id: str,
        status: RunStatus,
        totals: SyncCounts,
        errors: list[dict[str, Any]],
        metadata: dict[str, Any],
    ) -> None:
        try:
            await self.stores.sync_logs.finish(log_id, status, totals, errors, metadata)
        except PersistenceError as e:
            logger.error("sync_log_finish_failed", sync_log_id=log_id, error=str(e))

    def _cancelled(self, source: SourceConfig) -> SourceResult:
        self.events.emit(EventType.SOURCE_SKIPPED, source=source.name, reason="run_timeout")
        return SourceResult(
            source=source.name,
            agency=source.agency,
            status=SourceStatus.CANCELLED,
            error="Run deadline passed before the source started",
        )

    async def process_source(self, source: SourceConfig) -> SourceResult:
        """
        Process one source under its single-flight lease.

        Never raises: a lease backend that cannot be reached fails this
        source only.
        """
        result: SourceResult | None = None
        try:
            async with self.lease.hold(source.name) as acquired:
                if not acquired:
                    busy = SourceBusyError(source.name)
                    self.events.emit(EventType.SOURCE_SKIPPED, source=source.name, reason="busy")
                    return SourceResult(
                        source=source.name,
                        agency=source.agency,
                        status=SourceStatus.BUSY,
                        error=str(busy),
                    )
                bind_context(source=source.name)
                try:
                    result = await self._ingest_source(source)
                finally:
                    unbind_context("source")
                return result
        except Exception as e:
            if result is not None:
                # Ingestion finished; only the release failed.
                logger.error("source_lease_release_failed", source=source.name, error=str(e))
                return result
            self.events.emit(EventType.SOURCE_FAILED, source=source.name, error=e)
            return SourceResult(
                source=source.name,
                agency=source.agency,
                status=SourceStatus.ERROR,
                error=f"Source lease unavailable: {e}",
            )

    async def _ingest_source(self, source: SourceConfig) -> SourceResult:
        now = self._clock()
        result = SourceResult(source=source.name, agency=source.agency)
        self.events.emit(EventType.SOURCE_STARTED, source=source.name)

        previous: FreshnessRecord | None = None
        try:
            previous = await self.stores.freshness.get(source.name)
        except PersistenceError as e:
            logger.warning("freshness_read_failed", source=source.name, error=str(e))

        try:
            fetched = await self.fetcher.fetch(source, previous, now)
            result.endpoint = fetched.endpoint
            self.events.emit(
                EventType.SOURCE_FETCHED,
                source=source.name,
                endpoint=fetched.endpoint.value,
                url=fetched.url,
                attempts=fetched.attempts,
            )

            outcome = get_parser(fetched.shape).parse(fetched.content, source)
            result.fetched = len(outcome.drafts) + outcome.dropped + outcome.malformed
            result.skipped += outcome.dropped
            result.malformed = outcome.malformed

            for draft in outcome.drafts:
                await self._ingest_item(draft, source, result, now)

            result.status = SourceStatus.SUCCESS
        except IngestionError as e:
            result.status = SourceStatus.ERROR
            result.error = str(e)
            self.events.emit(EventType.SOURCE_FAILED, source=source.name, error=e)
        except Exception as e:
            result.status = SourceStatus.ERROR
            result.error = f"Unexpected error: {e}"
            self.events.emit(EventType.SOURCE_FAILED, source=source.name, error=e)

        await self._record_freshness(source, result, previous, now)
        self.events.emit(
            EventType.SOURCE_FINISHED,
            source=source.name,
            status=result.status.value,
            fetched=result.fetched,
            inserted=result.inserted,
            updated=result.updated,
            skipped=result.skipped,
            malformed=result.malformed,
        )
        return result

    async def _ingest_item(
        self,
        draft: Draft,
        source: SourceConfig,
        result: SourceResult,
        now: datetime,
    ) -> None:
        if not is_relevant(draft, source.keywords):
            result.skipped += 1
            result.irrelevant += 1
            return

        urgency = classify_urgency(draft, source.default_urgency)
        try:
            alert = self.normalizer.normalize(draft, source, urgency, now)
        except ValidationError as e:
            result.skipped += 1
            logger.debug("alert_item_invalid", source=source.name, error=str(e))
            return

        try:
            action = await self.deduplicator.apply(alert, source, now)
        except PersistenceError as e:
            result.errors += 1
            self.events.emit(
                EventType.ITEM_FAILED,
                source=source.name,
                error=e,
                identity_key=alert.identity_key,
            )
            return

        match action:
            case DedupAction.INSERT:
                result.inserted += 1
            case DedupAction.UPDATE:
                result.updated += 1
            case DedupAction.SKIP:
                result.skipped += 1

    async def _record_freshness(
        self,
        source: SourceConfig,
        result: SourceResult,
        previous: FreshnessRecord | None,
        now: datetime,
    ) -> None:
        succeeded = result.succeeded
        record = FreshnessRecord(
            source_name=source.name,
            last_attempt=now,
            fetch_status=FetchStatus.SUCCESS if succeeded else FetchStatus.ERROR,
            records_fetched=result.fetched,
            last_successful_fetch=(
                now if succeeded else (previous.last_successful_fetch if previous else None)
            ),
            error_message=None if succeeded else result.error,
            endpoint_used=result.endpoint,
        )
        try:
            await self.stores.freshness.upsert(source.name, record)
        except PersistenceError as e:
            self.events.emit(EventType.FRESHNESS_FAILED, source=source.name, error=e)
