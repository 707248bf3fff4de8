"""
Source Leases
=============

Single-flight guard: at most one run processes a given source at a time.

Acquisition never waits. A source whose lease is held elsewhere is
reported as busy by the pipeline.

Version: 0.1.0
"""

import asyncio
from collections.abc import AsyncIterator
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import Protocol

from redis.asyncio import Redis

from shared.database import redis_lock


class SourceLease(Protocol):
    """Non-blocking per-source lock."""

    def hold(self, source_name: str) -> AbstractAsyncContextManager[bool]:
        """Async context yielding True when the lease was acquired."""
        ...


class LocalSourceLease:
    """asyncio locks; single process only."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}

    @asynccontextmanager
    async def hold(self, source_name: str) -> AsyncIterator[bool]:
        lock = self._locks.setdefault(source_name, asyncio.Lock())
        if lock.locked():
            yield False
            return
        async with lock:
            yield True


class RedisSourceLease:
    """Redis SET NX EX lock; shared between processes and hosts."""

    def __init__(self, ttl_seconds: int = 900, client: Redis | None = None) -> None:  # type: ignore[type-arg]
        self.ttl_seconds = ttl_seconds
        self._client = client

    @asynccontextmanager
    async def hold(self, source_name: str) -> AsyncIterator[bool]:
        async with redis_lock(
            f"ingestion:{source_name}",
            timeout_seconds=self.ttl_seconds,
            blocking=False,
            client=self._client,
        ) as acquired:
            yield acquired
