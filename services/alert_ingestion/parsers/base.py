"""
Parser Base
===========

Parser capability and the shape-keyed parser registry.

Each payload shape (JSON API, RSS/Atom feed, HTML page) has one parser.
Parsers never raise on a single bad item: the item is counted and skipped.
A payload that cannot be read at all raises ParseError.

Version: 0.1.0
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from services.alert_ingestion.models import Draft, PayloadShape
from services.alert_ingestion.sources import SourceConfig


@dataclass
class ParseOutcome:
    """
    Drafts extracted from one payload.

    Attributes:
        drafts: Extracted items, in payload order, capped at max_items
        dropped: Items discarded on purpose (no title/link, nav noise)
        malformed: Items that could not be read
    """

    drafts: list[Draft] = field(default_factory=list)
    dropped: int = 0
    malformed: int = 0

    def add(self, draft: Draft, limit: int) -> bool:
        """Append unless the cap is reached; returns False once full."""
        if len(self.drafts) >= limit:
            return False
        self.drafts.append(draft)
        return True


class Parser(ABC):
    """Turns a payload of one shape into drafts."""

    shape: PayloadShape

    @abstractmethod
    def parse(self, content: str, source: SourceConfig) -> ParseOutcome:
        """
        Parse a payload.

        Raises:
            ParseError: the payload as a whole is unreadable
        """
        ...


_registry: dict[PayloadShape, Parser] = {}


def register_parser(shape: PayloadShape, parser: Parser) -> None:
    """Register (or replace) the parser for a shape."""
    _registry[shape] = parser


def get_parser(shape: PayloadShape) -> Parser:
    """Return the parser for a shape."""
    try:
        return _registry[shape]
    except KeyError:
        raise LookupError(f"No parser registered for shape: {shape}") from None


def registered_shapes() -> list[PayloadShape]:
    return list(_registry)


def clean_text(value: str | None) -> str:
    """Collapse whitespace; None becomes an empty string."""
    if not value:
        return ""
    return " ".join(value.split())
