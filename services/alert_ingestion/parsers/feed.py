"""
Feed Parser
===========

Parses RSS 2.0 (`<item>`) and Atom (`<entry>`) documents with lxml.

Version: 0.1.0
"""

import re

from lxml import etree

from services.alert_ingestion.errors import ParseError
from services.alert_ingestion.models import Draft, PayloadShape
from services.alert_ingestion.parsers.base import ParseOutcome, Parser, clean_text
from services.alert_ingestion.sources import SourceConfig
from shared.logging import get_logger


logger = get_logger(__name__)

# lxml rejects str input that carries an encoding declaration
_XML_DECLARATION = re.compile(r"^\s*<\?xml[^>]*\?>")

_ITEM_TAGS = {"item", "entry"}
_DESCRIPTION_TAGS = ("description", "summary", "encoded", "content")
_DATE_TAGS = ("pubDate", "published", "updated", "date", "issued")
_ID_TAGS = ("guid", "id")


def _local(element: etree._Element) -> str:
    if not isinstance(element.tag, str):
        return ""
    return etree.QName(element).localname


def _children(item: etree._Element) -> dict[str, list[etree._Element]]:
    index: dict[str, list[etree._Element]] = {}
    for child in item:
        name = _local(child)
        if name:
            index.setdefault(name, []).append(child)
    return index


def _text(element: etree._Element | None) -> str:
    if element is None:
        return ""
    return "".join(element.itertext()).strip()


def _first_text(index: dict[str, list[etree._Element]], tags: tuple[str, ...]) -> str:
    for tag in tags:
        for element in index.get(tag, []):
            value = _text(element)
            if value:
                return value
    return ""


def _link(index: dict[str, list[etree._Element]]) -> str:
    """RSS link text, or the Atom alternate href."""
    fallback = ""
    for element in index.get("link", []):
        href = element.get("href")
        if href:
            if element.get("rel", "alternate") == "alternate":
                return href.strip()
            fallback = fallback or href.strip()
            continue
        value = _text(element)
        if value:
            return value
    return fallback


class FeedParser(Parser):
    """Parser for RSS and Atom feeds."""

    shape = PayloadShape.FEED

    def parse(self, content: str, source: SourceConfig) -> ParseOutcome:
        parser = etree.XMLParser(resolve_entities=False, no_network=True, recover=False)
        try:
            root = etree.fromstring(_XML_DECLARATION.sub("", content, count=1), parser=parser)
        except (etree.XMLSyntaxError, ValueError) as e:
            raise ParseError(f"Invalid feed XML from {source.name}: {e}") from e

        outcome = ParseOutcome()
        for item in root.iter():
            if _local(item) not in _ITEM_TAGS:
                continue
            try:
                index = _children(item)
                title = clean_text(_first_text(index, ("title",)))
                link = _link(index)
                if not title or not link:
                    outcome.dropped += 1
                    continue
                draft = Draft(
                    title=title,
                    description=_first_text(index, _DESCRIPTION_TAGS),
                    link=link,
                    raw_date=_first_text(index, _DATE_TAGS) or None,
                    external_id=_first_text(index, _ID_TAGS) or None,
                    raw={name: _text(elements[0]) for name, elements in index.items()},
                )
            except (ValueError, TypeError) as e:
                outcome.malformed += 1
                logger.debug("feed_item_malformed", source=source.name, error=str(e))
                continue
            if not outcome.add(draft, source.max_items):
                break

        logger.debug(
            "feed_payload_parsed",
            source=source.name,
            drafts=len(outcome.drafts),
            dropped=outcome.dropped,
            malformed=outcome.malformed,
        )
        return outcome
