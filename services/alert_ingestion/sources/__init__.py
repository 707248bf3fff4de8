"""
Ingestion Sources
=================

Source configuration value objects and the registry that serves them.
"""

from services.alert_ingestion.sources.registry import (
    DEFAULT_SOURCES_FILE,
    Endpoint,
    HtmlSelectors,
    JsonFieldMap,
    SourceConfig,
    SourceRegistry,
    load_registry,
)

__all__ = [
    "DEFAULT_SOURCES_FILE",
    "Endpoint",
    "HtmlSelectors",
    "JsonFieldMap",
    "SourceConfig",
    "SourceRegistry",
    "load_registry",
]
