"""
Alert Ingestion Routes
======================

API route handlers for the Alert Ingestion Service.

Routes:
- ingestion: pipeline runs, sources, freshness, sync history
- alerts: paginated alert listing
"""

from services.alert_ingestion.routes import alerts, ingestion


__all__ = ["alerts", "ingestion"]
