"""
Alert Ingestion Test Fixtures
=============================

Scripted upstreams, sample payloads and source factories.
"""

from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

import httpx
import pytest

from services.alert_ingestion.fetcher import Fetcher
from services.alert_ingestion.pipeline import IngestionPipeline
from services.alert_ingestion.sources import SourceConfig
from services.alert_ingestion.store import Stores, memory_stores
from shared.config import IngestionSettings


RSS_FEED = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0">
  <channel>
    <title>Agency Recalls</title>
    <link>https://example.gov</link>
    <item>
      <title>Listeria contamination found in deli meats</title>
      <link>https://example.gov/recalls/deli?utm_source=rss&amp;id=7#details</link>
      <description><![CDATA[<p>Ready-to-eat <b>deli</b> products may be contaminated.</p>]]></description>
      <pubDate>Mon, 15 Jan 2024 10:30:00 GMT</pubDate>
      <guid>recall-2024-001</guid>
    </item>
    <item>
      <title>Advisory issued for imported seafood</title>
      <link>/advisories/seafood</link>
      <description>Importers should review the recall guidance.</description>
      <pubDate>Tue, 16 Jan 2024 08:00:00 GMT</pubDate>
    </item>
    <item>
      <title>Agency publishes annual budget report</title>
      <link>https://example.gov/budget</link>
      <description>Fiscal year overview.</description>
    </item>
    <item>
      <title></title>
      <link>https://example.gov/untitled</link>
    </item>
  </channel>
</rss>
"""

ATOM_FEED = """<?xml version="1.0" encoding="utf-8"?>
<feed xmlns="http://www.w3.org/2005/Atom">
  <title>Agency Updates</title>
  <entry>
    <title>Outbreak investigation update</title>
    <link rel="alternate" href="https://example.gov/outbreaks/1"/>
    <id>tag:example.gov,2024:outbreak-1</id>
    <updated>2024-02-01T12:00:00Z</updated>
    <summary>Investigation of a multistate outbreak.</summary>
  </entry>
  <entry>
    <title>Entry without a link</title>
    <updated>2024-02-02T12:00:00Z</updated>
  </entry>
</feed>
"""

JSON_PAYLOAD: dict[str, Any] = {
    "meta": {"results": {"total": 3}},
    "results": [
        {
            "recall_number": "F-0123-2024",
            "product_description": "Frozen spinach, 16 oz bags",
            "reason_for_recall": "Potential Listeria monocytogenes contamination.",
            "report_date": "20240110",
        },
        {
            "recall_number": "F-0456-2024",
            "product_description": "Almond butter",
            "reason_for_recall": "Undeclared peanut allergen.",
            "report_date": "20240112",
        },
        "not-an-object",
    ],
}

HTML_PAGE = """
<html>
  <body>
    <nav><div class="news-item"><a href="/home">Home</a></div></nav>
    <div class="news-item">
      <h3><a href="/news/2024/inspection-results">Inspection results for seafood processors</a></h3>
      <time datetime="2024-03-05">March 5, 2024</time>
      <p>Inspectors reviewed 40 processing facilities.</p>
    </div>
    <div class="news-item">
      <h3><a href="https://example.gov/news/2024/closure">Fishery closure announced for Gulf region</a></h3>
      <span class="date">March 7, 2024</span>
      <p>Closure effective immediately.</p>
    </div>
  </body>
</html>
"""


class FakeUpstream:
    """
    Scripted HTTP upstream for httpx.MockTransport.

    Each URL (scheme, host and path; query ignored) has a queue of
    responses. The last queued response repeats once the queue is drained.
    """

    def __init__(self) -> None:
        self.routes: dict[str, list[Callable[[httpx.Request], httpx.Response]]] = {}
        self.calls: list[httpx.Request] = []

    @staticmethod
    def _key(url: httpx.URL | str) -> str:
        url = httpx.URL(url)
        return f"{url.scheme}://{url.host}{url.path}"

    def add(self, url: str, status_code: int = 200, text: str = "", **headers: str) -> "FakeUpstream":
        def respond(request: httpx.Request) -> httpx.Response:
            return httpx.Response(status_code, text=text, headers=headers)

        self.routes.setdefault(self._key(url), []).append(respond)
        return self

    def add_json(self, url: str, payload: Any, status_code: int = 200) -> "FakeUpstream":
        def respond(request: httpx.Request) -> httpx.Response:
            return httpx.Response(status_code, json=payload)

        self.routes.setdefault(self._key(url), []).append(respond)
        return self

    def add_error(self, url: str, error: type[httpx.TransportError]) -> "FakeUpstream":
        def respond(request: httpx.Request) -> httpx.Response:
            raise error("scripted failure", request=request)

        self.routes.setdefault(self._key(url), []).append(respond)
        return self

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        queue = self.routes.get(self._key(request.url))
        if not queue:
            return httpx.Response(404, text="not scripted")
        respond = queue.pop(0) if len(queue) > 1 else queue[0]
        return respond(request)

    def calls_to(self, url: str, method: str | None = None) -> int:
        key = self._key(url)
        return sum(
            1
            for r in self.calls
            if self._key(r.url) == key and (method is None or r.method == method)
        )

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


class SleepRecorder:
    """Stand-in for asyncio.sleep that records requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


class FrozenClock:
    """Controllable `now` for freshness and dedup window tests."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture
def sleeper() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(datetime(2024, 3, 1, 12, 0, tzinfo=UTC))


@pytest.fixture
def ingestion_config() -> IngestionSettings:
    return IngestionSettings(
        inter_source_delay_seconds=1.5,
        request_timeout_seconds=5,
        run_timeout_seconds=900,
    )


@pytest.fixture
def make_source() -> Callable[..., SourceConfig]:
    """Factory for feed sources; keyword overrides go straight to SourceConfig."""

    def factory(name: str = "agency-feed", **overrides: Any) -> SourceConfig:
        data: dict[str, Any] = {
            "name": name,
            "agency": "FDA",
            "category": "food-recall",
            "base_url": "https://example.gov",
            "primary": {"url": f"https://example.gov/{name}/rss.xml", "shape": "feed"},
            "keywords": [],
        }
        data.update(overrides)
        return SourceConfig.model_validate(data)

    return factory


@pytest.fixture
def stores() -> Stores:
    return memory_stores()


@pytest.fixture
def make_pipeline(
    upstream: FakeUpstream,
    sleeper: SleepRecorder,
    clock: FrozenClock,
    stores: Stores,
    ingestion_config: IngestionSettings,
) -> Callable[..., IngestionPipeline]:
    """Pipeline wired to the scripted upstream, memory stores and frozen clock."""

    def factory(**overrides: Any) -> IngestionPipeline:
        fetcher = Fetcher(ingestion_config, client=upstream.client(), sleep=sleeper)
        options: dict[str, Any] = {
            "stores": stores,
            "fetcher": fetcher,
            "config": ingestion_config,
            "sleep": sleeper,
            "clock": clock,
        }
        options.update(overrides)
        return IngestionPipeline(**options)

    return factory


@pytest.fixture
def rss_feed() -> str:
    return RSS_FEED


@pytest.fixture
def atom_feed() -> str:
    return ATOM_FEED


@pytest.fixture
def json_payload() -> dict[str, Any]:
    return JSON_PAYLOAD


@pytest.fixture
def html_page() -> str:
    return HTML_PAGE
