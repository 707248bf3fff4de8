"""
Alert Ingestion Service
=======================

Pulls regulatory notices from government sources (JSON APIs, RSS/Atom
feeds, HTML pages), normalizes them into canonical alerts, filters for
relevance, classifies urgency, deduplicates and persists them while
tracking per-source freshness and run history.

Features:
- Declarative source registry (JSON document)
- Retry/backoff with primary -> fallback endpoints
- Shape-keyed parser registry
- Windowed deduplication
- Sync log and freshness tracking

Port: 8010
"""

__version__ = "0.1.0"
