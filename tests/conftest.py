"""
Test Configuration
==================

Pytest fixtures for RegWatch tests.
"""

import os
from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# Set test environment
os.environ["ENVIRONMENT"] = "testing"
os.environ["INGESTION_STORAGE"] = "memory"
os.environ["INGESTION_LEASE_BACKEND"] = "local"
os.environ["INGESTION_INTER_SOURCE_DELAY_SECONDS"] = "0"


@pytest.fixture(scope="session")
def anyio_backend() -> str:
    """Use asyncio backend for async tests."""
    return "asyncio"


@pytest_asyncio.fixture
async def alert_ingestion_client() -> AsyncGenerator[AsyncClient, None]:
    """
    Create test client for the Alert Ingestion Service.

    ASGITransport does not run the lifespan, so the service is installed on
    app.state directly: memory stores and an HTTP client that reaches nothing.
    Tests that need upstream data replace `app.state.ingestion`.
    """
    import httpx

    from services.alert_ingestion.dependencies import build_service
    from services.alert_ingestion.main import app
    from services.alert_ingestion.store import memory_stores

    offline = httpx.AsyncClient(
        transport=httpx.MockTransport(lambda request: httpx.Response(503))
    )

    async def no_sleep(_: float) -> None:
        return None

    app.state.ingestion = build_service(stores=memory_stores(), client=offline, sleep=no_sleep)

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client

    await offline.aclose()
    app.state.ingestion = None
