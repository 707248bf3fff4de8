"""
Payload Parsers
===============

One parser per payload shape, looked up through `get_parser(shape)`.
A new shape is added with `register_parser` without touching these.
"""

from services.alert_ingestion.models import PayloadShape
from services.alert_ingestion.parsers.base import (
    ParseOutcome,
    Parser,
    get_parser,
    register_parser,
    registered_shapes,
)
from services.alert_ingestion.parsers.feed import FeedParser
from services.alert_ingestion.parsers.html import HtmlParser
from services.alert_ingestion.parsers.json_api import JsonApiParser


register_parser(PayloadShape.JSON_API, JsonApiParser())
register_parser(PayloadShape.FEED, FeedParser())
register_parser(PayloadShape.HTML, HtmlParser())

__all__ = [
    "FeedParser",
    "HtmlParser",
    "JsonApiParser",
    "ParseOutcome",
    "Parser",
    "get_parser",
    "register_parser",
    "registered_shapes",
]
