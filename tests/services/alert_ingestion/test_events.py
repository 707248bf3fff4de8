"""
Tests for Ingestion Events and Source Leases
============================================

Version: 0.1.0
"""

from unittest.mock import AsyncMock

import pytest

from services.alert_ingestion.errors import FetchError
from services.alert_ingestion.events import (
    ErrorCollector,
    EventType,
    IngestionEvents,
    structlog_sink,
)
from services.alert_ingestion.lease import LocalSourceLease, RedisSourceLease


# ============================================================================
# Event Tests
# ============================================================================


class TestIngestionEvents:
    """Tests for the publish/subscribe channel."""

    def test_subscribe_and_unsubscribe(self) -> None:
        """Test subscribers receive events until removed."""
        events = IngestionEvents()
        seen = []
        unsubscribe = events.subscribe(lambda e: seen.append(e.type))

        events.emit(EventType.RUN_STARTED, scope="ALL")
        unsubscribe()
        events.emit(EventType.RUN_FINISHED, scope="ALL")

        assert seen == [EventType.RUN_STARTED]

    def test_failing_subscriber_is_isolated(self) -> None:
        """Test one broken subscriber does not stop the others."""
        events = IngestionEvents()
        seen = []

        def broken(event) -> None:
            raise RuntimeError("observer bug")

        events.subscribe(broken)
        events.subscribe(lambda e: seen.append(e.source))

        events.emit(EventType.SOURCE_STARTED, source="fda-recalls")

        assert seen == ["fda-recalls"]

    def test_structlog_sink_accepts_every_event(self) -> None:
        """Test the log sink handles error and plain events."""
        events = IngestionEvents()
        events.subscribe(structlog_sink)

        events.emit(EventType.SOURCE_SKIPPED, source="a", reason="busy")
        events.emit(EventType.SOURCE_FAILED, source="a", error=FetchError("HTTP 500"))
        events.emit(EventType.RUN_FINISHED, scope="ALL", status="success")


class TestErrorCollector:
    """Tests for ErrorCollector."""

    def test_collects_error_events_only(self) -> None:
        """Test lifecycle events are ignored."""
        events = IngestionEvents()
        collector = ErrorCollector()
        events.subscribe(collector)

        events.emit(EventType.SOURCE_STARTED, source="a")
        events.emit(
            EventType.SOURCE_FAILED,
            source="a",
            error=FetchError("HTTP 503", url="https://example.gov/a", status_code=503),
        )
        events.emit(EventType.SOURCE_FINISHED, source="a", status="error")

        assert len(collector.errors) == 1
        entry = collector.errors[0]
        assert entry["kind"] == "fetch"
        assert entry["error_type"] == "FetchError"
        assert entry["status_code"] == 503
        assert entry["source"] == "a"
        assert "at" in entry

    def test_unexpected_exception_entry(self) -> None:
        """Test non-domain exceptions are recorded as unexpected."""
        events = IngestionEvents()
        collector = ErrorCollector()
        events.subscribe(collector)

        events.emit(
            EventType.ITEM_FAILED,
            source="a",
            error=KeyError("title"),
            identity_key="id:1",
        )

        entry = collector.errors[0]
        assert entry["kind"] == "unexpected"
        assert entry["error_type"] == "KeyError"
        assert entry["identity_key"] == "id:1"

    def test_error_entry_without_exception(self) -> None:
        """Test an error event without an exception still has a message."""
        events = IngestionEvents()
        collector = ErrorCollector()
        events.subscribe(collector)

        events.emit(EventType.FRESHNESS_FAILED, source="a", message="store unavailable")

        assert collector.errors[0]["message"] == "store unavailable"


# ============================================================================
# Lease Tests
# ============================================================================


class TestLocalSourceLease:
    """Tests for the in-process lease."""

    @pytest.mark.asyncio
    async def test_second_holder_is_refused(self) -> None:
        """Test acquisition never waits."""
        lease = LocalSourceLease()

        async with lease.hold("a") as first:
            async with lease.hold("a") as second:
                assert first is True
                assert second is False
            async with lease.hold("b") as other:
                assert other is True

    @pytest.mark.asyncio
    async def test_released_after_exit(self) -> None:
        """Test the lease is free again after the holder exits."""
        lease = LocalSourceLease()

        async with lease.hold("a"):
            pass
        async with lease.hold("a") as again:
            assert again is True


class TestRedisSourceLease:
    """Tests for the Redis-backed lease."""

    @pytest.mark.asyncio
    async def test_acquire_and_release(self) -> None:
        """Test SET NX EX on the namespaced key, released on exit."""
        client = AsyncMock()
        client.set.return_value = True
        lease = RedisSourceLease(ttl_seconds=600, client=client)

        async with lease.hold("fsis-recalls") as acquired:
            assert acquired is True

        args, kwargs = client.set.call_args
        assert args[0] == "lock:ingestion:fsis-recalls"
        assert kwargs == {"nx": True, "ex": 600}
        client.eval.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_held_elsewhere(self) -> None:
        """Test a taken key yields False immediately and is not released."""
        client = AsyncMock()
        client.set.return_value = None
        lease = RedisSourceLease(client=client)

        async with lease.hold("fsis-recalls") as acquired:
            assert acquired is False

        client.set.assert_awaited_once()
        client.eval.assert_not_awaited()
