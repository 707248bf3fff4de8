"""
Source Registry
===============

Declarative configuration of ingestion sources.

Sources are immutable value objects loaded from a JSON document, so adding
an agency feed is a config change, never a pipeline change.

Document format:
    {
      "sources": [
        {
          "name": "fsis-recalls",
          "agency": "FSIS",
          "category": "meat-poultry-recall",
          "base_url": "https://www.fsis.usda.gov",
          "primary": {"url": "...", "shape": "json_api"},
          "fallback": {"url": "...", "shape": "feed"},
          "keywords": ["recall", "listeria"]
        }
      ]
    }

Version: 0.1.0
"""

import json
from collections.abc import Iterable, Iterator
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from services.alert_ingestion.errors import UnknownSourceError
from services.alert_ingestion.models import PayloadShape, Urgency
from shared.logging import get_logger


logger = get_logger(__name__)

DEFAULT_SOURCES_FILE = Path(__file__).parent / "default_sources.json"


class Endpoint(BaseModel):
    """One URL a source can be fetched from."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    url: str
    shape: PayloadShape
    headers: dict[str, str] = Field(default_factory=dict)
    params: dict[str, str] = Field(default_factory=dict)


class JsonFieldMap(BaseModel):
    """
    Field aliases for JSON API payloads.

    Each canonical field maps to a list of candidate keys; the first
    non-empty value wins. `results_path` is a dotted path to the item list.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    results_path: str = "results"
    title: list[str] = Field(default_factory=lambda: ["title", "product_description"])
    description: list[str] = Field(
        default_factory=lambda: ["description", "reason_for_recall", "summary"]
    )
    id: list[str] = Field(default_factory=lambda: ["id", "recall_number", "event_id"])
    date: list[str] = Field(
        default_factory=lambda: [
            "published_date",
            "report_date",
            "recall_initiation_date",
            "date",
        ]
    )
    link: list[str] = Field(default_factory=lambda: ["url", "link"])


class HtmlSelectors(BaseModel):
    """CSS selectors for HTML listing pages."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    item: str
    title: str = "h2, h3, .title, a"
    link: str = "a[href]"
    date: str | None = "time, .date"
    summary: str | None = "p, .summary, .description"


class SourceConfig(BaseModel):
    """Immutable description of one ingestion source."""

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    name: str = Field(min_length=1)
    agency: str
    category: str
    region: str = "US"
    description: str = ""
    base_url: str
    primary: Endpoint
    fallback: Endpoint | None = None
    keywords: list[str] = Field(default_factory=list)
    default_urgency: Urgency = Urgency.LOW
    dedup_window_days: int = Field(default=7, ge=7, le=30)
    enabled: bool = True
    json_fields: JsonFieldMap = Field(default_factory=JsonFieldMap, alias="json")
    html: HtmlSelectors | None = None
    max_items: int = Field(default=50, ge=1)

    @model_validator(mode="after")
    def require_selectors_for_html(self) -> "SourceConfig":
        """HTML endpoints cannot be parsed without selectors."""
        shapes = [self.primary.shape]
        if self.fallback is not None:
            shapes.append(self.fallback.shape)
        if PayloadShape.HTML in shapes and self.html is None:
            raise ValueError(f"Source {self.name} has an HTML endpoint but no html selectors")
        return self

    def endpoints(self) -> list[Endpoint]:
        """Primary first, then fallback if configured."""
        return [self.primary] if self.fallback is None else [self.primary, self.fallback]

    def summary(self) -> dict[str, Any]:
        """Listing representation for the HTTP surface."""
        return {
            "name": self.name,
            "agency": self.agency,
            "category": self.category,
            "region": self.region,
            "description": self.description,
            "enabled": self.enabled,
            "primary": {"url": self.primary.url, "shape": self.primary.shape.value},
            "fallback": (
                {"url": self.fallback.url, "shape": self.fallback.shape.value}
                if self.fallback
                else None
            ),
            "keywords": list(self.keywords),
            "default_urgency": self.default_urgency.value,
            "dedup_window_days": self.dedup_window_days,
        }


class SourceRegistry:
    """
    Lookup of configured sources by name.

    Usage:
        registry = SourceRegistry.from_file(path)
        for source in registry.enabled():
            ...
    """

    def __init__(self, configs: Iterable[SourceConfig]) -> None:
        self._sources: dict[str, SourceConfig] = {}
        for config in configs:
            if config.name in self._sources:
                raise ValueError(f"Duplicate source name: {config.name}")
            self._sources[config.name] = config

    @classmethod
    def from_configs(cls, configs: Iterable[SourceConfig | dict[str, Any]]) -> "SourceRegistry":
        """Build from config objects or raw dicts."""
        return cls(
            c if isinstance(c, SourceConfig) else SourceConfig.model_validate(c)
            for c in configs
        )

    @classmethod
    def from_file(cls, path: Path | str) -> "SourceRegistry":
        """Load a JSON document with a top-level `sources` list."""
        path = Path(path)
        document = json.loads(path.read_text(encoding="utf-8"))
        raw_sources = document["sources"] if isinstance(document, dict) else document
        registry = cls.from_configs(raw_sources)
        logger.info(
            "source_registry_loaded",
            path=str(path),
            sources=len(registry),
            enabled=len(registry.enabled()),
        )
        return registry

    @classmethod
    def default(cls) -> "SourceRegistry":
        """The packaged source set."""
        return cls.from_file(DEFAULT_SOURCES_FILE)

    def all(self) -> list[SourceConfig]:
        return list(self._sources.values())

    def enabled(self) -> list[SourceConfig]:
        return [s for s in self._sources.values() if s.enabled]

    def names(self) -> list[str]:
        return list(self._sources)

    def get(self, name: str) -> SourceConfig:
        """Return a source by name or raise UnknownSourceError."""
        try:
            return self._sources[name]
        except KeyError:
            raise UnknownSourceError(name) from None

    def __contains__(self, name: object) -> bool:
        return name in self._sources

    def __iter__(self) -> Iterator[SourceConfig]:
        return iter(self._sources.values())

    def __len__(self) -> int:
        return len(self._sources)


def load_registry(sources_file: Path | None = None) -> SourceRegistry:
    """Load the configured registry, or the packaged defaults."""
    if sources_file is None:
        return SourceRegistry.default()
    return SourceRegistry.from_file(sources_file)
