"""
Alert Ingestion Service - Main Application
==========================================

FastAPI application exposing the regulatory alert ingestion pipeline.

Version: 0.1.0
"""

from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from services.alert_ingestion import __version__
from services.alert_ingestion.dependencies import build_service
from services.alert_ingestion.errors import IngestionError, UnknownSourceError
from services.alert_ingestion.routes import alerts, ingestion
from shared.config import LeaseBackend, StorageBackend, settings
from shared.database import PostgresClient, RedisClient
from shared.logging import get_logger, setup_logging
from shared.models.common import HealthResponse


# Setup logging
setup_logging(
    log_level=settings.log_level.value,
    json_logs=settings.is_production,
    service_name="alert-ingestion",
)

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> Any:
    """Application lifespan manager."""
    logger.info(
        "alert_ingestion_starting",
        environment=settings.environment.value,
        port=settings.ports.alert_ingestion,
        storage=settings.ingestion.storage.value,
    )

    # Startup
    try:
        if settings.ingestion.storage == StorageBackend.POSTGRES:
            await PostgresClient.create_tables()
            logger.info("postgres_connected")

        if settings.ingestion.lease_backend == LeaseBackend.REDIS:
            RedisClient.get_client()
            logger.info("redis_connected")

        # Tests may install a prebuilt service
        if getattr(app.state, "ingestion", None) is None:
            app.state.ingestion = build_service(settings)

    except Exception as e:
        logger.error("startup_failed", error=str(e))
        raise

    yield

    # Shutdown
    logger.info("alert_ingestion_shutting_down")
    await app.state.ingestion.close()
    await PostgresClient.close()
    await RedisClient.close()


# Create FastAPI application
app = FastAPI(
    title="RegWatch Alert Ingestion Service",
    description="Regulatory alert ingestion, normalization and deduplication",
    version=__version__,
    lifespan=lifespan,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors.origins_list,
    allow_credentials=settings.cors.allow_credentials,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================================================
# Health Check Endpoints
# ============================================================================


@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check() -> HealthResponse:
    """
    Service health check.

    Returns health status of the service and its backing stores.
    """
    components: dict[str, dict[str, Any]] = {}

    if settings.ingestion.storage == StorageBackend.POSTGRES:
        components["postgres"] = await PostgresClient.health_check()
    else:
        components["storage"] = {"status": "healthy", "backend": "memory"}

    if settings.ingestion.lease_backend == LeaseBackend.REDIS:
        components["redis"] = await RedisClient.health_check()

    all_healthy = all(c.get("status") == "healthy" for c in components.values())

    return HealthResponse(
        status="healthy" if all_healthy else "degraded",
        service="alert-ingestion",
        version=__version__,
        components=components,
    )


@app.get("/", tags=["Health"])
async def root() -> dict[str, str]:
    """Root endpoint."""
    return {
        "service": "RegWatch Alert Ingestion Service",
        "version": __version__,
        "docs": "/docs",
    }


# ============================================================================
# Include Routers
# ============================================================================

app.include_router(
    ingestion.router,
    prefix="/api/v1/ingestion",
    tags=["Ingestion"],
)

app.include_router(
    alerts.router,
    prefix="/api/v1/alerts",
    tags=["Alerts"],
)


# ============================================================================
# Error Handlers
# ============================================================================


def _error_response(status_code: int, error: str, **extra: Any) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "success": False,
            "error": error,
            "status_code": status_code,
            **extra,
        },
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handle HTTP exceptions."""
    logger.warning(
        "http_exception",
        status_code=exc.status_code,
        detail=exc.detail,
        path=request.url.path,
    )
    return _error_response(exc.status_code, exc.detail)


@app.exception_handler(UnknownSourceError)
async def unknown_source_handler(request: Request, exc: UnknownSourceError) -> JSONResponse:
    """Unknown source names are a 404."""
    logger.warning("unknown_source", source=exc.name, path=request.url.path)
    return _error_response(status.HTTP_404_NOT_FOUND, str(exc), error_code=exc.kind)


@app.exception_handler(IngestionError)
async def ingestion_error_handler(request: Request, exc: IngestionError) -> JSONResponse:
    """Domain errors that escape a handler are client errors."""
    logger.warning(
        "ingestion_request_rejected",
        error=str(exc),
        error_type=type(exc).__name__,
        path=request.url.path,
    )
    return _error_response(status.HTTP_400_BAD_REQUEST, str(exc), error_code=exc.kind)


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions."""
    logger.error(
        "unhandled_exception",
        error=str(exc),
        error_type=type(exc).__name__,
        path=request.url.path,
    )
    return _error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error")


# ============================================================================
# Run with Uvicorn
# ============================================================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "services.alert_ingestion.main:app",
        host="0.0.0.0",
        port=settings.ports.alert_ingestion,
        reload=settings.debug,
        log_level=settings.log_level.value.lower(),
    )
