"""
Service Wiring
==============

Builds the ingestion object graph from settings and exposes it to routes.

Version: 0.1.0
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

import httpx
from fastapi import Request

from services.alert_ingestion.commands import CommandDispatcher
from services.alert_ingestion.fetcher import Fetcher
from services.alert_ingestion.lease import LocalSourceLease, RedisSourceLease, SourceLease
from services.alert_ingestion.pipeline import IngestionPipeline
from services.alert_ingestion.sources import SourceRegistry, load_registry
from services.alert_ingestion.store import Stores, build_stores
from shared.config import LeaseBackend, Settings, get_settings


@dataclass
class IngestionService:
    """Everything a request or script needs to run ingestion."""

    settings: Settings
    registry: SourceRegistry
    stores: Stores
    fetcher: Fetcher
    pipeline: IngestionPipeline
    dispatcher: CommandDispatcher

    async def close(self) -> None:
        await self.fetcher.close()


def build_lease(settings: Settings) -> SourceLease:
    if settings.ingestion.lease_backend == LeaseBackend.REDIS:
        return RedisSourceLease(ttl_seconds=int(settings.ingestion.run_timeout_seconds))
    return LocalSourceLease()


def build_service(
    settings: Settings | None = None,
    registry: SourceRegistry | None = None,
    stores: Stores | None = None,
    client: httpx.AsyncClient | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> IngestionService:
    """
    Assemble the service.

    Args:
        settings: Application settings (defaults to the cached settings)
        registry: Source registry (defaults to INGESTION_SOURCES_FILE or packaged sources)
        stores: Stores (defaults to INGESTION_STORAGE)
        client: Preconfigured HTTP client for the fetcher
        sleep: Backoff and pacing sleep
    """
    settings = settings or get_settings()
    registry = registry or load_registry(settings.ingestion.sources_file)
    stores = stores or build_stores(settings.ingestion.storage)
    fetcher = Fetcher(settings.ingestion, client=client, sleep=sleep)
    pipeline = IngestionPipeline(
        stores=stores,
        fetcher=fetcher,
        config=settings.ingestion,
        lease=build_lease(settings),
        sleep=sleep,
    )
    return IngestionService(
        settings=settings,
        registry=registry,
        stores=stores,
        fetcher=fetcher,
        pipeline=pipeline,
        dispatcher=CommandDispatcher(registry, pipeline, fetcher),
    )


def get_service(request: Request) -> IngestionService:
    """FastAPI dependency returning the service built at startup."""
    return request.app.state.ingestion
