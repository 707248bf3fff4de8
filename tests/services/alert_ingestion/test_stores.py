"""
Tests for Ingestion Stores and Deduplication
============================================

Every store contract test runs against both the in-memory stores and the
SQL stores on an in-memory SQLite database.

Version: 0.1.0
"""

from collections.abc import AsyncGenerator
from datetime import UTC, datetime, timedelta

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from services.alert_ingestion.dedup import Deduplicator, dedup_bucket
from services.alert_ingestion.errors import DuplicateAlertError, SyncLogClosedError
from services.alert_ingestion.models import (
    Alert,
    AlertFilters,
    DedupAction,
    EndpointRole,
    FetchStatus,
    FreshnessRecord,
    RunStatus,
    SyncCounts,
    Urgency,
)
from services.alert_ingestion.store import Stores, memory_stores, sql_stores
from shared.database.postgres import Base
from shared.models import Pagination


T0 = datetime(2024, 3, 1, 12, 0, tzinfo=UTC)


# =============================================================================
# Fixtures
# =============================================================================


@pytest_asyncio.fixture(params=["memory", "sql"])
async def any_stores(request) -> AsyncGenerator[Stores, None]:
    """Memory stores and SQLite-backed SQL stores."""
    if request.param == "memory":
        yield memory_stores()
        return

    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    yield sql_stores(factory)
    await engine.dispose()


def make_alert(
    identity_key: str = "id:F-1",
    *,
    source: str = "fda-recalls",
    ingested_at: datetime = T0,
    published_date: datetime = T0,
    **overrides,
) -> Alert:
    data = {
        "identity_key": identity_key,
        "title": f"Recall {identity_key}",
        "summary": "Potential contamination.",
        "source": source,
        "agency": "FDA",
        "category": "food-recall",
        "region": "US",
        "urgency": Urgency.HIGH,
        "published_date": published_date,
        "external_url": "https://example.gov/recalls/1",
        "ingested_at": ingested_at,
    }
    data.update(overrides)
    return Alert(**data)


# ============================================================================
# Alert Store Tests
# ============================================================================


class TestAlertStore:
    """Contract tests for AlertStore implementations."""

    @pytest.mark.asyncio
    async def test_insert_and_find(self, any_stores) -> None:
        """Test a stored alert is found by identity key."""
        alert = make_alert(raw_payload={"guid": "F-1"})
        await any_stores.alerts.insert(alert)

        found = await any_stores.alerts.find_by_identity_key(
            "fda-recalls", "id:F-1", T0 - timedelta(days=7)
        )

        assert found is not None
        assert found.id == alert.id
        assert found.urgency == Urgency.HIGH
        assert found.ingested_at == T0
        assert found.raw_payload == {"guid": "F-1"}

    @pytest.mark.asyncio
    async def test_find_respects_window_start(self, any_stores) -> None:
        """Test rows ingested before the window are ignored."""
        await any_stores.alerts.insert(make_alert())

        found = await any_stores.alerts.find_by_identity_key(
            "fda-recalls", "id:F-1", T0 + timedelta(seconds=1)
        )

        assert found is None

    @pytest.mark.asyncio
    async def test_find_is_scoped_by_source(self, any_stores) -> None:
        """Test the same key under another source is a different alert."""
        await any_stores.alerts.insert(make_alert(source="cdc-newsroom"))

        found = await any_stores.alerts.find_by_identity_key(
            "fda-recalls", "id:F-1", T0 - timedelta(days=7)
        )

        assert found is None

    @pytest.mark.asyncio
    async def test_unique_violation_is_duplicate(self, any_stores) -> None:
        """Test (source, identity_key, bucket) is unique."""
        await any_stores.alerts.insert(make_alert(dedup_bucket=5))

        with pytest.raises(DuplicateAlertError):
            await any_stores.alerts.insert(make_alert(dedup_bucket=5))

    @pytest.mark.asyncio
    async def test_same_key_other_bucket_allowed(self, any_stores) -> None:
        """Test a notice may reappear in a later window."""
        await any_stores.alerts.insert(make_alert(dedup_bucket=5))
        await any_stores.alerts.insert(make_alert(dedup_bucket=6))

        _, total = await any_stores.alerts.query(AlertFilters(), Pagination())

        assert total == 2

    @pytest.mark.asyncio
    async def test_update_mutable(self, any_stores) -> None:
        """Test only the mutable fields change."""
        alert = make_alert()
        await any_stores.alerts.insert(alert)

        later = T0 + timedelta(days=1)
        await any_stores.alerts.update_mutable(alert.id, "Expanded recall.", {"v": 2}, later)

        found = await any_stores.alerts.find_by_identity_key(
            "fda-recalls", "id:F-1", T0 - timedelta(days=7)
        )
        assert found.summary == "Expanded recall."
        assert found.raw_payload == {"v": 2}
        assert found.updated_at == later
        assert found.ingested_at == T0
        assert found.title == alert.title

    @pytest.mark.asyncio
    async def test_query_filters_and_order(self, any_stores) -> None:
        """Test filters combine and results are newest published first."""
        await any_stores.alerts.insert(
            make_alert("id:1", published_date=T0 - timedelta(days=2), title="Salmonella recall")
        )
        await any_stores.alerts.insert(
            make_alert("id:2", published_date=T0 - timedelta(days=1), urgency=Urgency.LOW)
        )
        await any_stores.alerts.insert(
            make_alert("id:3", published_date=T0, source="cdc-newsroom", agency="CDC")
        )

        everything, total = await any_stores.alerts.query(AlertFilters(), Pagination())
        assert total == 3
        assert [a.identity_key for a in everything] == ["id:3", "id:2", "id:1"]

        fda, _ = await any_stores.alerts.query(AlertFilters(agency="FDA"), Pagination())
        assert {a.identity_key for a in fda} == {"id:1", "id:2"}

        high, _ = await any_stores.alerts.query(
            AlertFilters(source="fda-recalls", urgency=Urgency.HIGH), Pagination()
        )
        assert [a.identity_key for a in high] == ["id:1"]

        searched, _ = await any_stores.alerts.query(
            AlertFilters(search="salmonella"), Pagination()
        )
        assert [a.identity_key for a in searched] == ["id:1"]

        recent, _ = await any_stores.alerts.query(
            AlertFilters(since=T0 - timedelta(hours=36)), Pagination()
        )
        assert {a.identity_key for a in recent} == {"id:2", "id:3"}

    @pytest.mark.asyncio
    async def test_query_pagination(self, any_stores) -> None:
        """Test page slicing keeps the unpaginated total."""
        for i in range(5):
            await any_stores.alerts.insert(
                make_alert(f"id:{i}", published_date=T0 - timedelta(hours=i))
            )

        page, total = await any_stores.alerts.query(
            AlertFilters(), Pagination(page=2, page_size=2)
        )

        assert total == 5
        assert [a.identity_key for a in page] == ["id:2", "id:3"]


# ============================================================================
# Freshness and Sync Log Store Tests
# ============================================================================


class TestFreshnessStore:
    """Contract tests for FreshnessStore implementations."""

    @pytest.mark.asyncio
    async def test_upsert_replaces(self, any_stores) -> None:
        """Test one row per source, last write wins."""
        store = any_stores.freshness
        await store.upsert(
            "fda-recalls",
            FreshnessRecord(
                source_name="fda-recalls",
                last_attempt=T0,
                fetch_status=FetchStatus.SUCCESS,
                last_successful_fetch=T0,
                records_fetched=12,
                endpoint_used=EndpointRole.PRIMARY,
            ),
        )
        later = T0 + timedelta(hours=6)
        await store.upsert(
            "fda-recalls",
            FreshnessRecord(
                source_name="fda-recalls",
                last_attempt=later,
                fetch_status=FetchStatus.ERROR,
                last_successful_fetch=T0,
                error_message="HTTP 503",
            ),
        )

        record = await store.get("fda-recalls")

        assert record.fetch_status == FetchStatus.ERROR
        assert record.last_attempt == later
        assert record.last_successful_fetch == T0
        assert record.error_message == "HTTP 503"
        assert record.endpoint_used is None
        assert [r.source_name for r in await store.list_all()] == ["fda-recalls"]

    @pytest.mark.asyncio
    async def test_failure_never_clears_last_success(self, any_stores) -> None:
        """Test an error write without a known last success keeps the stored one."""
        store = any_stores.freshness
        await store.upsert(
            "fda-recalls",
            FreshnessRecord(
                source_name="fda-recalls",
                last_attempt=T0,
                fetch_status=FetchStatus.SUCCESS,
                last_successful_fetch=T0,
            ),
        )
        later = T0 + timedelta(hours=2)

        stored = await store.upsert(
            "fda-recalls",
            FreshnessRecord(
                source_name="fda-recalls",
                last_attempt=later,
                fetch_status=FetchStatus.ERROR,
                error_message="HTTP 500",
            ),
        )

        assert stored.last_successful_fetch == T0
        record = await store.get("fda-recalls")
        assert record.last_successful_fetch == T0
        assert record.last_attempt == later

    @pytest.mark.asyncio
    async def test_missing(self, any_stores) -> None:
        """Test unknown sources have no record."""
        assert await any_stores.freshness.get("never-run") is None


class TestSyncLogStore:
    """Contract tests for SyncLogStore implementations."""

    @pytest.mark.asyncio
    async def test_start_and_finish(self, any_stores) -> None:
        """Test running -> success with counts and merged metadata."""
        store = any_stores.sync_logs
        entry = await store.start("ALL", {"action": "scrape_all", "trigger": "cron"})
        assert entry.status == RunStatus.RUNNING

        closed = await store.finish(
            entry.id,
            RunStatus.SUCCESS,
            SyncCounts(fetched=10, inserted=4, updated=1, skipped=5),
            [{"kind": "fetch", "source": "epa-newsroom"}],
            {"duration_ms": 1200.5},
        )

        assert closed.status == RunStatus.SUCCESS
        assert closed.finished_at is not None
        assert (closed.fetched, closed.inserted, closed.updated, closed.skipped) == (10, 4, 1, 5)
        assert closed.metadata == {
            "action": "scrape_all",
            "trigger": "cron",
            "duration_ms": 1200.5,
        }
        stored = await store.get(entry.id)
        assert stored.errors == [{"kind": "fetch", "source": "epa-newsroom"}]

    @pytest.mark.asyncio
    async def test_finish_only_once(self, any_stores) -> None:
        """Test a closed entry cannot be closed again."""
        store = any_stores.sync_logs
        entry = await store.start("fda-recalls", {})
        await store.finish(entry.id, RunStatus.ERROR, SyncCounts(), [], {})

        with pytest.raises(SyncLogClosedError):
            await store.finish(entry.id, RunStatus.SUCCESS, SyncCounts(), [], {})

    @pytest.mark.asyncio
    async def test_finish_unknown(self, any_stores) -> None:
        """Test finishing a missing entry."""
        with pytest.raises(LookupError):
            await any_stores.sync_logs.finish("missing", RunStatus.SUCCESS, SyncCounts(), [], {})

    @pytest.mark.asyncio
    async def test_list_recent(self, any_stores) -> None:
        """Test newest first with a limit."""
        store = any_stores.sync_logs
        ids = [(await store.start(f"scope-{i}", {})).id for i in range(3)]

        recent = await store.list_recent(limit=2)

        assert len(recent) == 2
        assert {e.id for e in recent} <= set(ids)


# ============================================================================
# Deduplicator Tests
# ============================================================================


class TestDeduplicator:
    """Tests for the dedup window."""

    @pytest.fixture
    def source(self, make_source):
        return make_source("fda-recalls", dedup_window_days=7)

    def test_bucket(self) -> None:
        """Test bucket index is floor(ts / window)."""
        window = timedelta(days=7)

        assert dedup_bucket(T0, window) == int(T0.timestamp() // window.total_seconds())
        assert dedup_bucket(T0 + window, window) == dedup_bucket(T0, window) + 1

    @pytest.mark.asyncio
    async def test_new_alert_inserted(self, any_stores, source) -> None:
        """Test a first sighting is an insert."""
        dedup = Deduplicator(any_stores.alerts)

        action = await dedup.apply(make_alert(), source, T0)

        assert action == DedupAction.INSERT

    @pytest.mark.asyncio
    async def test_within_window_updates(self, any_stores, source) -> None:
        """Test a re-observation inside the window updates in place."""
        dedup = Deduplicator(any_stores.alerts)
        await dedup.apply(make_alert(), source, T0)

        later = T0 + timedelta(days=6)
        action = await dedup.apply(
            make_alert(ingested_at=later, summary="Expanded to more lots."), source, later
        )

        assert action == DedupAction.UPDATE
        rows, total = await any_stores.alerts.query(AlertFilters(), Pagination())
        assert total == 1
        assert rows[0].summary == "Expanded to more lots."
        assert rows[0].updated_at == later

    @pytest.mark.asyncio
    async def test_after_window_inserts(self, any_stores, source) -> None:
        """Test the same notice after the window is a new alert."""
        dedup = Deduplicator(any_stores.alerts)
        await dedup.apply(make_alert(), source, T0)

        later = T0 + timedelta(days=8)
        action = await dedup.apply(make_alert(ingested_at=later), source, later)

        assert action == DedupAction.INSERT
        _, total = await any_stores.alerts.query(AlertFilters(), Pagination())
        assert total == 2

    @pytest.mark.asyncio
    async def test_lost_race_is_skip(self, any_stores, source) -> None:
        """Test a uniqueness violation becomes SKIP."""
        window = timedelta(days=source.dedup_window_days)
        winner = make_alert(dedup_bucket=dedup_bucket(T0, window))
        await any_stores.alerts.insert(winner)

        loser = make_alert()

        class Blind:
            """Store view that misses the winner's row, as a concurrent run would."""

            def __init__(self, inner) -> None:
                self.inner = inner

            async def find_by_identity_key(self, *args):
                return None

            async def upsert(self, alert, existing_id=None):
                return await self.inner.upsert(alert, existing_id)

        action = await Deduplicator(Blind(any_stores.alerts)).apply(loser, source, T0)

        assert action == DedupAction.SKIP
        _, total = await any_stores.alerts.query(AlertFilters(), Pagination())
        assert total == 1
