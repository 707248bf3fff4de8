"""
Alert Normalizer
================

Turns shape-independent drafts into canonical Alert records:
- HTML stripped and whitespace collapsed, summary truncated
- dates parsed from the formats agencies publish, UTC
- links resolved, fragments and tracking parameters removed
- identity key derived for deduplication

Version: 0.1.0
"""

import hashlib
import html
import warnings
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from urllib.parse import parse_qsl, urlencode, urljoin, urlsplit, urlunsplit

from bs4 import BeautifulSoup, MarkupResemblesLocatorWarning
from dateutil import parser as date_parser

from services.alert_ingestion.errors import ValidationError
from services.alert_ingestion.models import Alert, Draft, Urgency, utc_now
from services.alert_ingestion.sources import SourceConfig


TITLE_MAX_LENGTH = 500
ELLIPSIS = "..."

_TRACKING_PARAMS = {"ref", "ref_src", "fbclid", "gclid"}


def strip_html(value: str | None) -> str:
    """Plain text with entities decoded and whitespace collapsed."""
    if not value:
        return ""
    if "<" in value and ">" in value:
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", MarkupResemblesLocatorWarning)
            text = BeautifulSoup(value, "lxml").get_text(" ")
    else:
        text = html.unescape(value)
    return " ".join(text.split())


def truncate(value: str, max_length: int) -> str:
    """Cut to max_length, ending in '...' when shortened."""
    if len(value) <= max_length:
        return value
    return value[: max_length - len(ELLIPSIS)] + ELLIPSIS


def parse_date(raw: str | None) -> datetime | None:
    """
    Parse a published date into an aware UTC datetime.

    Accepts RFC 822, ISO 8601, YYYYMMDD, MM/DD/YYYY and written-out
    month forms. Naive values are taken as UTC. Returns None when the
    value is missing or unrecognized.
    """
    if not raw:
        return None
    value = raw.strip()
    if not value:
        return None

    parsed: datetime | None = None
    try:
        parsed = parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        parsed = None

    if parsed is None:
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            parsed = None

    if parsed is None:
        try:
            parsed = date_parser.parse(value)
        except (ValueError, OverflowError):
            parsed = None

    if parsed is None:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def canonical_url(link: str | None, base_url: str) -> str:
    """Absolute URL without fragment or tracking parameters."""
    if not link or not link.strip():
        return base_url
    absolute = urljoin(base_url if base_url.endswith("/") else base_url + "/", link.strip())
    parts = urlsplit(absolute)
    query = [
        (key, value)
        for key, value in parse_qsl(parts.query, keep_blank_values=True)
        if not key.lower().startswith("utm_") and key.lower() not in _TRACKING_PARAMS
    ]
    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(query), ""))


def normalize_title(title: str) -> str:
    return " ".join(title.lower().split())


def identity_key(external_id: str | None, title: str) -> str:
    """Source external id when present, otherwise a hash of the title."""
    if external_id and external_id.strip():
        return f"id:{external_id.strip()}"
    digest = hashlib.sha256(normalize_title(title).encode()).hexdigest()
    return f"title:{digest}"


class Normalizer:
    """Builds Alert records from drafts."""

    def __init__(self, summary_max_length: int = 500) -> None:
        self.summary_max_length = summary_max_length

    def normalize(
        self,
        draft: Draft,
        source: SourceConfig,
        urgency: Urgency,
        now: datetime | None = None,
    ) -> Alert:
        """
        Build the canonical alert for a draft.

        Raises:
            ValidationError: the draft has no usable title
        """
        now = now or utc_now()
        title = strip_html(draft.title)
        if not title:
            raise ValidationError(f"Item from {source.name} has no title")

        return Alert(
            identity_key=identity_key(draft.external_id, title),
            title=truncate(title, TITLE_MAX_LENGTH),
            summary=truncate(strip_html(draft.description), self.summary_max_length),
            source=source.name,
            agency=source.agency,
            category=source.category,
            region=source.region,
            urgency=urgency,
            published_date=parse_date(draft.raw_date) or now,
            external_url=canonical_url(draft.link, source.base_url),
            ingested_at=now,
            external_id=draft.external_id.strip() if draft.external_id else None,
            raw_payload=draft.raw,
        )
