"""
RegWatch Services
=================

Services:
- alert_ingestion: regulatory alert ingestion, normalization and deduplication
"""

__all__ = [
    "alert_ingestion",
]
