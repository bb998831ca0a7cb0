"""
Retrying HTTP fetcher with bounded concurrency, per-attempt timeouts and observability.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Dict, Mapping, Optional
from urllib.parse import urlparse

import aiohttp
import structlog

from shelfreader.config.config import FetcherConfig
from shelfreader.crawler.retry import RetryPolicy, classify_error, is_retryable, is_retryable_status
from shelfreader.crawler.user_agents import UserAgentRotator, browser_headers
from shelfreader.exceptions import NetworkError, NetworkErrorKind
from shelfreader.observability.metrics import METRICS
from shelfreader.observability.performance import PerformanceMonitor

logger = structlog.get_logger(__name__)


@dataclass
class FetchResult:
    """Successful response with timing and attempt information."""

    url: str
    final_url: str
    status: int
    headers: Dict[str, str]
    body: bytes
    attempts: int
    elapsed: float

    @property
    def encoding(self) -> Optional[str]:
        """Charset declared in the Content-Type header, if any."""
        content_type = next((v for k, v in self.headers.items() if k.lower() == "content-type"), "")
        for part in content_type.split(";"):
            key, _, value = part.strip().partition("=")
            if key.lower() == "charset" and value:
                return value.strip("\"' ").lower()
        return None


def validate_url(url: str) -> None:
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise NetworkError(NetworkErrorKind.INVALID_URL, url, "URL must be absolute http(s)", attempts=0)


class RetryingFetcher:
    """
    Fetches pages with browser-like headers and retries transient failures.

    A single semaphore caps the number of sockets in use. Each attempt runs
    under its own hard timeout; an attempt that exceeds it is cancelled and
    its connection released before the next attempt starts.
    """

    def __init__(
        self,
        config: FetcherConfig,
        monitor: Optional[PerformanceMonitor] = None,
        retry_policy: Optional[RetryPolicy] = None,
    ) -> None:
        self.config = config
        self.monitor = monitor or PerformanceMonitor()
        self.retry_policy = retry_policy or RetryPolicy.from_config(config)
        self.user_agents = UserAgentRotator(fixed=config.user_agent)
        self.session: Optional[aiohttp.ClientSession] = None
        self._semaphore: Optional[asyncio.Semaphore] = None
        self._in_flight = 0
        self.logger = logger.bind(component="RetryingFetcher")

    async def initialize(self) -> None:
        """Open the HTTP session."""
        if self.session is not None:
            return
        connector = aiohttp.TCPConnector(
            limit=self.config.pool_size,
            ttl_dns_cache=30,
            keepalive_timeout=30,
        )
        # Per-attempt deadlines are enforced with asyncio.timeout in _attempt.
        self.session = aiohttp.ClientSession(connector=connector, timeout=aiohttp.ClientTimeout(total=None))
        self._semaphore = asyncio.Semaphore(self.config.pool_size)
        self.logger.info(
            "HTTP session initialized",
            pool_size=self.config.pool_size,
            max_retries=self.retry_policy.max_retries,
            timeout=self.config.timeout,
        )

    async def close(self) -> None:
        if self.session is not None:
            await self.session.close()
            self.session = None
        self._semaphore = None
        self.logger.info("HTTP session closed")

    async def __aenter__(self) -> RetryingFetcher:
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def _attempt(self, url: str, headers: Mapping[str, str]) -> tuple[int, Dict[str, str], bytes, str]:
        """Run one request under the hard per-attempt timeout."""
        assert self.session is not None
        async with asyncio.timeout(self.config.timeout):
            async with self.session.get(url, headers=dict(headers), allow_redirects=True) as response:
                body = await response.read()
                return response.status, dict(response.headers), body, str(response.url)

    def _track_in_flight(self, delta: int) -> None:
        self._in_flight += delta
        METRICS["fetch_in_flight"].set(self._in_flight)

    async def fetch(self, url: str, headers: Optional[Mapping[str, str]] = None) -> FetchResult:
        """
        Fetch ``url`` and return the body of the first 2xx response.

        Args:
            url: Absolute http(s) URL
            headers: Optional header overrides merged over the browser defaults

        Returns:
            FetchResult with status, headers, body and attempt count

        Raises:
            NetworkError: on a fatal failure, or once retries are exhausted
        """
        if self.session is None:
            raise RuntimeError("Fetcher not initialized. Call initialize() first.")
        validate_url(url)
        assert self._semaphore is not None

        request_headers = browser_headers(url, self.user_agents.get(), self.config.accept_language, headers)
        start = time.monotonic()
        self._track_in_flight(1)
        attempt = 0

        try:
            async with self._semaphore:
                while True:
                    attempt += 1
                    try:
                        status, response_headers, body, final_url = await self._attempt(url, request_headers)
                    except (asyncio.TimeoutError, aiohttp.ClientError, OSError) as exc:
                        if self.retry_policy.should_retry(attempt, exc):
                            await self._backoff(url, attempt, reason=classify_error(exc).value, error=exc)
                            continue
                        raise self._give_up(url, attempt, start, exc) from exc

                    if 200 <= status < 300:
                        elapsed = time.monotonic() - start
                        self.monitor.record_request(url, elapsed * 1000, True, size=len(body))
                        METRICS["fetch_requests_total"].labels(outcome="success").inc()
                        METRICS["fetch_latency_seconds"].observe(elapsed)
                        self.logger.debug("Fetched", url=url, status=status, attempts=attempt, size=len(body))
                        return FetchResult(
                            url=url,
                            final_url=final_url,
                            status=status,
                            headers=response_headers,
                            body=body,
                            attempts=attempt,
                            elapsed=elapsed,
                        )

                    if is_retryable_status(status) and attempt < self.retry_policy.max_attempts:
                        await self._backoff(url, attempt, reason=f"http_{status}")
                        continue
                    raise self._give_up_status(url, attempt, start, status)
        finally:
            self._track_in_flight(-1)

    async def _backoff(self, url: str, attempt: int, *, reason: str, error: Optional[BaseException] = None) -> None:
        delay = self.retry_policy.delay(attempt)
        METRICS["fetch_retries_total"].labels(reason=reason).inc()
        self.logger.info(
            "Retrying request",
            url=url,
            attempt=attempt,
            max_retries=self.retry_policy.max_retries,
            reason=reason,
            error=str(error) if error else None,
            delay=round(delay, 3),
        )
        await asyncio.sleep(delay)

    def _give_up(self, url: str, attempt: int, start: float, exc: BaseException) -> NetworkError:
        kind = classify_error(exc)
        elapsed_ms = (time.monotonic() - start) * 1000
        self.monitor.record_request(
            url, elapsed_ms, False, error=kind.value, timeout=kind is NetworkErrorKind.TIMEOUT
        )
        METRICS["fetch_requests_total"].labels(outcome=kind.value).inc()
        message = str(exc) or type(exc).__name__
        if kind is NetworkErrorKind.TIMEOUT:
            message = f"request timed out after {self.config.timeout}s"
        self.logger.warning("Request failed", url=url, attempts=attempt, kind=kind.value, error=message)
        return NetworkError(kind, url, message, attempts=attempt, retryable=is_retryable(exc))

    def _give_up_status(self, url: str, attempt: int, start: float, status: int) -> NetworkError:
        self.monitor.record_request(url, (time.monotonic() - start) * 1000, False, error=f"http_{status}")
        METRICS["fetch_requests_total"].labels(outcome=NetworkErrorKind.HTTP_STATUS.value).inc()
        self.logger.warning("Request rejected", url=url, status=status, attempts=attempt)
        return NetworkError(
            NetworkErrorKind.HTTP_STATUS,
            url,
            f"HTTP {status}",
            attempts=attempt,
            status=status,
            retryable=is_retryable_status(status),
        )

    def get_stats(self) -> Dict[str, object]:
        return {
            "in_flight": self._in_flight,
            "pool_size": self.config.pool_size,
            "performance": self.monitor.snapshot(),
        }
