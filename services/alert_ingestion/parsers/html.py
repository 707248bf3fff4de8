"""
HTML Parser
===========

Scrapes listing pages (NOAA, OSHA) with BeautifulSoup and per-source CSS
selectors.

Version: 0.1.0
"""

from bs4 import BeautifulSoup, Tag
from bs4.builder import ParserRejectedMarkup

from services.alert_ingestion.errors import ParseError
from services.alert_ingestion.models import Draft, PayloadShape
from services.alert_ingestion.parsers.base import ParseOutcome, Parser, clean_text
from services.alert_ingestion.sources import SourceConfig
from shared.logging import get_logger


logger = get_logger(__name__)

# Shorter titles are navigation links, not notices
MIN_TITLE_LENGTH = 10


def _select_text(container: Tag, selector: str | None) -> str:
    if not selector:
        return ""
    element = container.select_one(selector)
    if element is None:
        return ""
    return clean_text(element.get_text(" ", strip=True))


def _select_href(container: Tag, selector: str, title_element: Tag | None) -> str | None:
    element = container.select_one(selector)
    if element is not None and element.get("href"):
        return str(element["href"]).strip()
    if title_element is not None and title_element.get("href"):
        return str(title_element["href"]).strip()
    if container.name == "a" and container.get("href"):
        return str(container["href"]).strip()
    return None


class HtmlParser(Parser):
    """Parser for HTML listing pages."""

    shape = PayloadShape.HTML

    def parse(self, content: str, source: SourceConfig) -> ParseOutcome:
        if source.html is None:
            raise ParseError(f"Source {source.name} has no html selectors")
        selectors = source.html

        try:
            soup = BeautifulSoup(content, "lxml")
        except ParserRejectedMarkup as e:
            raise ParseError(f"Unreadable HTML from {source.name}: {e}") from e

        outcome = ParseOutcome()
        containers = soup.select(selectors.item)
        for container in containers:
            try:
                title_element = container.select_one(selectors.title)
                title = (
                    clean_text(title_element.get_text(" ", strip=True))
                    if title_element is not None
                    else ""
                )
                if len(title) < MIN_TITLE_LENGTH:
                    outcome.dropped += 1
                    continue

                date_element = container.select_one(selectors.date) if selectors.date else None
                raw_date = None
                if date_element is not None:
                    raw_date = date_element.get("datetime") or date_element.get_text(strip=True)

                draft = Draft(
                    title=title,
                    description=_select_text(container, selectors.summary),
                    link=_select_href(container, selectors.link, title_element),
                    raw_date=str(raw_date) if raw_date else None,
                    raw={"html": str(container)[:4000]},
                )
            except (ValueError, TypeError, AttributeError) as e:
                outcome.malformed += 1
                logger.debug("html_item_malformed", source=source.name, error=str(e))
                continue
            if not outcome.add(draft, source.max_items):
                break

        logger.debug(
            "html_payload_parsed",
            source=source.name,
            containers=len(containers),
            drafts=len(outcome.drafts),
            dropped=outcome.dropped,
        )
        return outcome
