"""
Ingestion Commands
==================

Invocation contract shared by the HTTP surface and the cron script.

Actions:
- scrape_all:    every enabled source
- scrape_source: one named source
- test_feeds:    reachability probe of every enabled source, no writes

Version: 0.1.0
"""

from enum import Enum
from typing import Any, assert_never

from pydantic import BaseModel, model_validator

from services.alert_ingestion.fetcher import Fetcher
from services.alert_ingestion.pipeline import ALL_SOURCES_SCOPE, IngestionPipeline, RunResult
from services.alert_ingestion.sources import SourceRegistry
from shared.logging import get_logger


logger = get_logger(__name__)


class IngestionAction(str, Enum):
    """Closed set of supported actions."""

    SCRAPE_ALL = "scrape_all"
    SCRAPE_SOURCE = "scrape_source"
    TEST_FEEDS = "test_feeds"


class Trigger(str, Enum):
    """Who started the run."""

    CRON = "cron"
    MANUAL = "manual"


class IngestionCommand(BaseModel):
    """A request to run the pipeline."""

    action: IngestionAction = IngestionAction.SCRAPE_ALL
    source: str | None = None
    trigger: Trigger = Trigger.MANUAL

    @model_validator(mode="after")
    def require_source_for_scrape_source(self) -> "IngestionCommand":
        if self.action == IngestionAction.SCRAPE_SOURCE and not self.source:
            raise ValueError("scrape_source requires a source name")
        return self


class CommandDispatcher:
    """Routes each command to the handler for its action."""

    def __init__(
        self,
        registry: SourceRegistry,
        pipeline: IngestionPipeline,
        fetcher: Fetcher,
    ) -> None:
        self.registry = registry
        self.pipeline = pipeline
        self.fetcher = fetcher

    async def dispatch(self, command: IngestionCommand) -> RunResult:
        """
        Execute a command.

        Raises:
            UnknownSourceError: scrape_source names a source that is not registered
        """
        logger.info(
            "ingestion_command_received",
            action=command.action.value,
            source=command.source,
            trigger=command.trigger.value,
        )
        match command.action:
            case IngestionAction.SCRAPE_ALL:
                return await self._scrape_all(command)
            case IngestionAction.SCRAPE_SOURCE:
                return await self._scrape_source(command)
            case IngestionAction.TEST_FEEDS:
                return await self._test_feeds(command)
            case _:
                assert_never(command.action)

    async def _scrape_all(self, command: IngestionCommand) -> RunResult:
        sources = self.registry.enabled()
        return await self.pipeline.run(
            sources,
            scope=ALL_SOURCES_SCOPE,
            action=command.action.value,
            metadata={"trigger": command.trigger.value, "sources": [s.name for s in sources]},
        )

    async def _scrape_source(self, command: IngestionCommand) -> RunResult:
        # Explicitly named sources run even when disabled for scheduled runs
        source = self.registry.get(command.source or "")
        return await self.pipeline.run(
            [source],
            scope=source.name,
            action=command.action.value,
            metadata={"trigger": command.trigger.value, "sources": [source.name]},
        )

    async def _test_feeds(self, command: IngestionCommand) -> RunResult:
        probes: list[dict[str, Any]] = []
        for source in self.registry.enabled():
            probes.extend(p.to_dict() for p in await self.fetcher.probe(source))

        reachable = sum(1 for p in probes if p["reachable"])
        logger.info("feeds_tested", endpoints=len(probes), reachable=reachable)
        return RunResult(
            success=reachable > 0 or not probes,
            action=command.action.value,
            probes=probes,
            message=f"{reachable}/{len(probes)} endpoints reachable",
        )
