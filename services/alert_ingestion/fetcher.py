"""
Source Fetcher
==============

HTTP retrieval of source payloads with retry/backoff and primary ->
fallback endpoint selection.

Retry policy per endpoint:
- 429, 5xx, timeouts and transport errors are retried
- other 4xx fail immediately
- at most `max_attempts` attempts, waiting base * 2^(n-1) seconds after
  attempt n (2s, 4s with the default base of 2)

Endpoint order:
- stale source (last success older than `staleness_hours`) with a fallback:
  fallback first, primary only if the fallback is exhausted
- otherwise primary first, fallback only if the primary is exhausted

Version: 0.1.0
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from services.alert_ingestion.errors import EndpointFailure, FetchError
from services.alert_ingestion.models import (
    EndpointRole,
    FreshnessRecord,
    PayloadShape,
    utc_now,
)
from services.alert_ingestion.sources import Endpoint, SourceConfig
from shared.config import IngestionSettings
from shared.logging import get_logger


logger = get_logger(__name__)

ACCEPT_HEADERS: dict[PayloadShape, str] = {
    PayloadShape.JSON_API: "application/json",
    PayloadShape.FEED: "application/rss+xml, application/atom+xml, application/xml, text/xml",
    PayloadShape.HTML: "text/html, application/xhtml+xml",
}


@dataclass
class FetchResult:
    """A successfully retrieved payload."""

    content: str
    shape: PayloadShape
    url: str
    endpoint: EndpointRole
    status_code: int
    attempts: int


@dataclass
class ProbeResult:
    """Connectivity check for one endpoint."""

    source: str
    agency: str
    endpoint: EndpointRole
    url: str
    reachable: bool
    status_code: int | None = None
    latency_ms: float | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source,
            "agency": self.agency,
            "endpoint": self.endpoint.value,
            "url": self.url,
            "reachable": self.reachable,
            "status_code": self.status_code,
            "latency_ms": self.latency_ms,
            "error": self.error,
        }


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, FetchError) and exc.retryable


class Fetcher:
    """
    Retrieves source payloads over HTTP.

    The client is created lazily and reused across sources in one run.
    Pass `client` to inject a preconfigured (or mocked) httpx client and
    `sleep` to control backoff waits.
    """

    def __init__(
        self,
        config: IngestionSettings | None = None,
        client: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.config = config or IngestionSettings()
        self._client = client
        self._owns_client = client is None
        self._sleep = sleep

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.config.request_timeout_seconds),
                headers={"User-Agent": self.config.user_agent},
                follow_redirects=True,
                http2=True,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client if this fetcher created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "Fetcher":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    def is_stale(self, freshness: FreshnessRecord | None, now: datetime | None = None) -> bool:
        """A source with no successful fetch on record is not stale."""
        if freshness is None:
            return False
        return freshness.is_stale(timedelta(hours=self.config.staleness_hours), now)

    def plan(
        self,
        source: SourceConfig,
        freshness: FreshnessRecord | None = None,
        now: datetime | None = None,
    ) -> list[tuple[EndpointRole, Endpoint]]:
        """Order in which endpoints will be tried."""
        primary = (EndpointRole.PRIMARY, source.primary)
        if source.fallback is None:
            return [primary]
        fallback = (EndpointRole.FALLBACK, source.fallback)
        if self.is_stale(freshness, now):
            return [fallback, primary]
        return [primary, fallback]

    async def fetch(
        self,
        source: SourceConfig,
        freshness: FreshnessRecord | None = None,
        now: datetime | None = None,
    ) -> FetchResult:
        """
        Fetch a source's payload.

        Args:
            source: Source configuration
            freshness: Current freshness record, used for fallback selection
            now: Reference time for the staleness check

        Returns:
            The first successful payload

        Raises:
            FetchError: every planned endpoint was exhausted
        """
        plan = self.plan(source, freshness, now)
        if plan[0][0] == EndpointRole.FALLBACK:
            logger.warning(
                "source_stale_using_fallback",
                source=source.name,
                last_successful_fetch=(
                    freshness.last_successful_fetch.isoformat()
                    if freshness and freshness.last_successful_fetch
                    else None
                ),
            )

        failures: list[EndpointFailure] = []
        for role, endpoint in plan:
            try:
                return await self._fetch_endpoint(source, role, endpoint)
            except FetchError as e:
                failures.append(
                    EndpointFailure(
                        endpoint=role.value,
                        url=endpoint.url,
                        message=str(e),
                        status_code=e.status_code,
                        attempts=e.attempts,
                    )
                )
                logger.warning(
                    "endpoint_exhausted",
                    source=source.name,
                    endpoint=role.value,
                    url=endpoint.url,
                    status_code=e.status_code,
                    attempts=e.attempts,
                    error=str(e),
                )

        last = failures[-1]
        raise FetchError(
            f"All endpoints failed for {source.name}: {last.message}",
            url=last.url,
            status_code=last.status_code,
            attempts=sum(f.attempts for f in failures),
            failures=failures,
        )

    async def _fetch_endpoint(
        self,
        source: SourceConfig,
        role: EndpointRole,
        endpoint: Endpoint,
    ) -> FetchResult:
        """Fetch one endpoint with the retry policy applied."""
        attempts = 0

        def _log_retry(retry_state: RetryCallState) -> None:
            exc = retry_state.outcome.exception() if retry_state.outcome else None
            logger.warning(
                "fetch_retry",
                source=source.name,
                endpoint=role.value,
                attempt=retry_state.attempt_number,
                wait=retry_state.next_action.sleep if retry_state.next_action else None,
                error=str(exc),
            )

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.config.max_attempts),
            wait=wait_exponential(multiplier=self.config.backoff_base_seconds, min=0),
            retry=retry_if_exception(_is_retryable),
            before_sleep=_log_retry,
            sleep=self._sleep,
            reraise=True,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    response = await self._request(endpoint, attempts)
        except FetchError as e:
            e.attempts = attempts
            raise

        logger.debug(
            "source_fetched",
            source=source.name,
            endpoint=role.value,
            url=str(response.url),
            status=response.status_code,
            attempts=attempts,
        )
        return FetchResult(
            content=response.text,
            shape=endpoint.shape,
            url=str(response.url),
            endpoint=role,
            status_code=response.status_code,
            attempts=attempts,
        )

    async def _request(self, endpoint: Endpoint, attempt: int) -> httpx.Response:
        """Single GET; every failure is translated to FetchError."""
        client = await self._get_client()
        headers = {"Accept": ACCEPT_HEADERS[endpoint.shape], **endpoint.headers}
        try:
            response = await client.get(
                endpoint.url,
                headers=headers,
                params=endpoint.params or None,
            )
        except httpx.TimeoutException as e:
            raise FetchError(
                f"Timed out fetching {endpoint.url}", url=endpoint.url, attempts=attempt
            ) from e
        except httpx.HTTPError as e:
            raise FetchError(
                f"Request to {endpoint.url} failed: {e}", url=endpoint.url, attempts=attempt
            ) from e

        if not response.is_success:
            raise FetchError(
                f"HTTP {response.status_code} from {endpoint.url}",
                url=endpoint.url,
                status_code=response.status_code,
                attempts=attempt,
            )
        return response

    async def probe(self, source: SourceConfig) -> list[ProbeResult]:
        """
        Lightweight reachability check of every endpoint of a source.

        HEAD first; servers answering 405 get a GET instead. No retries.
        """
        client = await self._get_client()
        results: list[ProbeResult] = []
        roles = [EndpointRole.PRIMARY, EndpointRole.FALLBACK]
        for role, endpoint in zip(roles, source.endpoints()):
            started = utc_now()
            headers = {"Accept": ACCEPT_HEADERS[endpoint.shape], **endpoint.headers}
            timeout = httpx.Timeout(self.config.probe_timeout_seconds)
            try:
                response = await client.head(endpoint.url, headers=headers, timeout=timeout)
                if response.status_code == 405:
                    response = await client.get(
                        endpoint.url,
                        headers=headers,
                        params=endpoint.params or None,
                        timeout=timeout,
                    )
                latency_ms = (utc_now() - started).total_seconds() * 1000
                results.append(
                    ProbeResult(
                        source=source.name,
                        agency=source.agency,
                        endpoint=role,
                        url=endpoint.url,
                        reachable=response.is_success,
                        status_code=response.status_code,
                        latency_ms=round(latency_ms, 2),
                        error=None if response.is_success else f"HTTP {response.status_code}",
                    )
                )
            except httpx.HTTPError as e:
                results.append(
                    ProbeResult(
                        source=source.name,
                        agency=source.agency,
                        endpoint=role,
                        url=endpoint.url,
                        reachable=False,
                        error=str(e) or type(e).__name__,
                    )
                )
        return results
