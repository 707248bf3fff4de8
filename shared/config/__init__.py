"""
Configuration Module
====================

Centralized configuration management using Pydantic Settings.
Loads from environment variables with type validation and defaults.

Usage:
    from shared.config import settings

    print(settings.environment)
    print(settings.ingestion.staleness_hours)
"""

from shared.config.settings import (
    Environment,
    IngestionSettings,
    LeaseBackend,
    LogLevel,
    Settings,
    StorageBackend,
    get_settings,
)


# Global settings instance (singleton)
settings = get_settings()

__all__ = [
    "Settings",
    "IngestionSettings",
    "get_settings",
    "settings",
    "Environment",
    "LogLevel",
    "StorageBackend",
    "LeaseBackend",
]
