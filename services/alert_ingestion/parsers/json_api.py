"""
JSON API Parser
===============

Parses structured API payloads (openFDA, FSIS) through per-source field
aliases.

Version: 0.1.0
"""

import json
from typing import Any

from services.alert_ingestion.errors import ParseError
from services.alert_ingestion.models import Draft, PayloadShape
from services.alert_ingestion.parsers.base import ParseOutcome, Parser, clean_text
from services.alert_ingestion.sources import SourceConfig
from shared.logging import get_logger


logger = get_logger(__name__)


def _first(item: dict[str, Any], aliases: list[str]) -> str | None:
    """First non-empty value among the aliases, as a string."""
    for key in aliases:
        value = item.get(key)
        if value is None or value == "":
            continue
        if isinstance(value, (dict, list)):
            continue
        return str(value)
    return None


def _locate(document: Any, path: str) -> Any:
    """Walk a dotted path through nested objects."""
    node = document
    for part in path.split("."):
        if not isinstance(node, dict) or part not in node:
            return None
        node = node[part]
    return node


class JsonApiParser(Parser):
    """Parser for JSON API payloads."""

    shape = PayloadShape.JSON_API

    def parse(self, content: str, source: SourceConfig) -> ParseOutcome:
        try:
            document = json.loads(content)
        except (json.JSONDecodeError, TypeError) as e:
            raise ParseError(f"Invalid JSON from {source.name}: {e}") from e

        fields = source.json_fields
        items = document if isinstance(document, list) else _locate(document, fields.results_path)
        if not isinstance(items, list):
            raise ParseError(
                f"No item list at '{fields.results_path}' in payload from {source.name}"
            )

        outcome = ParseOutcome()
        for item in items:
            if not isinstance(item, dict):
                outcome.malformed += 1
                continue

            title = clean_text(_first(item, fields.title))
            draft = Draft(
                title=title,
                description=_first(item, fields.description) or "",
                link=_first(item, fields.link),
                raw_date=_first(item, fields.date),
                external_id=_first(item, fields.id),
                raw=item,
            )
            if not outcome.add(draft, source.max_items):
                break

        logger.debug(
            "json_payload_parsed",
            source=source.name,
            items=len(items),
            drafts=len(outcome.drafts),
            malformed=outcome.malformed,
        )
        return outcome
