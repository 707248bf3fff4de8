"""
Ingestion Stores
================

Alert, freshness and sync log persistence.

Usage:
    from services.alert_ingestion.store import build_stores

    stores = build_stores(settings.ingestion.storage)
"""

from services.alert_ingestion.store.base import (
    AlertStore,
    FreshnessStore,
    Stores,
    SyncLogStore,
)
from services.alert_ingestion.store.memory import (
    MemoryAlertStore,
    MemoryFreshnessStore,
    MemorySyncLogStore,
    memory_stores,
)
from services.alert_ingestion.store.sql import (
    SqlAlertStore,
    SqlFreshnessStore,
    SqlSyncLogStore,
    sql_stores,
)
from shared.config import StorageBackend
from shared.database import PostgresClient


def build_stores(backend: StorageBackend) -> Stores:
    """Stores for the configured backend."""
    if backend == StorageBackend.MEMORY:
        return memory_stores()
    return sql_stores(PostgresClient.get_session_factory())


__all__ = [
    "AlertStore",
    "FreshnessStore",
    "SyncLogStore",
    "Stores",
    "MemoryAlertStore",
    "MemoryFreshnessStore",
    "MemorySyncLogStore",
    "memory_stores",
    "SqlAlertStore",
    "SqlFreshnessStore",
    "SqlSyncLogStore",
    "sql_stores",
    "build_stores",
]
