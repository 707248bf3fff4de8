"""
Deduplicator
============

Decides whether a normalized alert is new, a re-observation to refresh,
or a lost insert race.

Window semantics:
- an alert with the same (source, identity_key) first ingested within the
  source's dedup window is updated in place
- otherwise a new row is inserted in bucket floor(ingested_at / window)
- a uniqueness violation on insert is a concurrent duplicate: skip

Version: 0.1.0
"""

from datetime import datetime, timedelta

from services.alert_ingestion.errors import DuplicateAlertError
from services.alert_ingestion.models import Alert, DedupAction
from services.alert_ingestion.sources import SourceConfig
from services.alert_ingestion.store.base import AlertStore
from shared.logging import get_logger


logger = get_logger(__name__)


def dedup_bucket(ingested_at: datetime, window: timedelta) -> int:
    """Index of the dedup window containing ingested_at."""
    return int(ingested_at.timestamp() // window.total_seconds())


class Deduplicator:
    """Applies insert / update / skip against an AlertStore."""

    def __init__(self, store: AlertStore) -> None:
        self.store = store

    async def apply(self, alert: Alert, source: SourceConfig, now: datetime) -> DedupAction:
        """
        Persist an alert according to the dedup window.

        Raises:
            PersistenceError: the store failed for a reason other than uniqueness
        """
        window = timedelta(days=source.dedup_window_days)
        existing = await self.store.find_by_identity_key(
            source.name, alert.identity_key, now - window
        )

        if existing is not None:
            alert.updated_at = now
            return await self.store.upsert(alert, existing_id=existing.id)

        alert.dedup_bucket = dedup_bucket(alert.ingested_at, window)
        try:
            return await self.store.upsert(alert)
        except DuplicateAlertError:
            logger.info(
                "alert_duplicate_skipped",
                source=source.name,
                identity_key=alert.identity_key,
            )
            return DedupAction.SKIP
