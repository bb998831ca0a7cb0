"""
Tests for the retrying fetcher.

Responses are mocked with aioresponses; backoff delays come from the
millisecond-scale fixture config so retries finish quickly.
"""

import asyncio

import aiohttp
import pytest
from aioresponses import aioresponses
from yarl import URL

from shelfreader.config import FetcherConfig
from shelfreader.crawler.fetcher import FetchResult, RetryingFetcher, validate_url
from shelfreader.crawler.user_agents import DESKTOP_AGENTS, UserAgentRotator, browser_headers, referer_for
from shelfreader.exceptions import NetworkError, NetworkErrorKind

PAGE_URL = "https://example.com/book/1/1.html"


@pytest.mark.unit
class TestFetchSuccess:
    """Successful fetches and the result they return."""

    @pytest.mark.asyncio
    async def test_first_attempt_succeeds(self, fetcher, monitor):
        """A 200 response is returned as-is after one attempt."""
        with aioresponses() as m:
            m.get(PAGE_URL, status=200, body=b"<html>ok</html>", content_type="text/html; charset=gbk")

            result = await fetcher.fetch(PAGE_URL)

        assert result.status == 200
        assert result.body == b"<html>ok</html>"
        assert result.attempts == 1
        assert result.encoding == "gbk"
        assert monitor.snapshot()["successes"] == 1
        assert monitor.snapshot()["bytes_received"] == len(b"<html>ok</html>")

        stats = fetcher.get_stats()
        assert stats["in_flight"] == 0
        assert stats["performance"]["successes"] == 1

    @pytest.mark.asyncio
    async def test_browser_headers_are_sent(self, fetcher):
        """Every request carries the configured UA, referer and language."""
        with aioresponses() as m:
            m.get(PAGE_URL, status=200, body=b"ok")

            await fetcher.fetch(PAGE_URL, headers={"X-Test": "1"})

            call = m.requests[("GET", URL(PAGE_URL))][0]
        sent = call.kwargs["headers"]
        assert sent["User-Agent"] == "TestReader/1.0"
        assert sent["Referer"] == "https://example.com/"
        assert sent["Accept-Language"].startswith("zh-CN")
        assert sent["X-Test"] == "1"

    @pytest.mark.asyncio
    async def test_retry_on_503_then_success(self, fetcher, monitor):
        """A transient status is retried and the later success returned."""
        with aioresponses() as m:
            m.get(PAGE_URL, status=503)
            m.get(PAGE_URL, status=200, body=b"second")

            result = await fetcher.fetch(PAGE_URL)

        assert result.body == b"second"
        assert result.attempts == 2
        # One fetch is one request from the monitor's point of view
        assert monitor.snapshot()["requests"] == 1

    @pytest.mark.asyncio
    async def test_retry_after_disconnect(self, fetcher):
        """Dropped connections are retried."""
        with aioresponses() as m:
            m.get(PAGE_URL, exception=aiohttp.ServerDisconnectedError())
            m.get(PAGE_URL, status=200, body=b"ok")

            result = await fetcher.fetch(PAGE_URL)

        assert result.attempts == 2


@pytest.mark.unit
class TestFetchFailure:
    """Fatal failures and exhausted retries."""

    @pytest.mark.asyncio
    async def test_404_is_not_retried(self, fetcher, monitor):
        with aioresponses() as m:
            m.get(PAGE_URL, status=404)

            with pytest.raises(NetworkError) as exc_info:
                await fetcher.fetch(PAGE_URL)

        error = exc_info.value
        assert error.kind is NetworkErrorKind.HTTP_STATUS
        assert error.status == 404
        assert error.attempts == 1
        assert not error.retryable
        assert monitor.snapshot()["error_types"] == {"http_404": 1}

    @pytest.mark.asyncio
    async def test_retries_exhausted_on_status(self, fetcher):
        with aioresponses() as m:
            m.get(PAGE_URL, status=503, repeat=True)

            with pytest.raises(NetworkError) as exc_info:
                await fetcher.fetch(PAGE_URL)

        error = exc_info.value
        assert error.status == 503
        # max_retries=2 in the fixture config
        assert error.attempts == 3
        assert error.retryable

    @pytest.mark.asyncio
    async def test_retries_exhausted_on_timeout(self, fetcher, monitor):
        with aioresponses() as m:
            m.get(PAGE_URL, exception=asyncio.TimeoutError(), repeat=True)

            with pytest.raises(NetworkError) as exc_info:
                await fetcher.fetch(PAGE_URL)

        assert exc_info.value.kind is NetworkErrorKind.TIMEOUT
        assert exc_info.value.attempts == 3
        snapshot = monitor.snapshot()
        assert snapshot["timeouts"] == 1
        assert snapshot["error_types"] == {"timeout": 1}

    @pytest.mark.asyncio
    async def test_slow_attempt_hits_hard_timeout(self, monitor):
        """An attempt that outlives the per-attempt deadline is cancelled."""
        config = FetcherConfig(timeout=0.05, max_retries=0, user_agent="TestReader/1.0")

        async def slow(url, **kwargs):
            await asyncio.sleep(1)

        async with RetryingFetcher(config, monitor=monitor) as client:
            with aioresponses() as m:
                m.get(PAGE_URL, callback=slow)

                with pytest.raises(NetworkError) as exc_info:
                    await client.fetch(PAGE_URL)

        assert exc_info.value.kind is NetworkErrorKind.TIMEOUT
        assert "timed out" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_invalid_url_fails_without_request(self, fetcher, monitor):
        with pytest.raises(NetworkError) as exc_info:
            await fetcher.fetch("ftp://example.com/file")

        assert exc_info.value.kind is NetworkErrorKind.INVALID_URL
        assert exc_info.value.attempts == 0
        assert monitor.snapshot()["requests"] == 0

    @pytest.mark.asyncio
    async def test_uninitialized_fetcher(self, fetcher_config):
        client = RetryingFetcher(fetcher_config)

        with pytest.raises(RuntimeError, match="not initialized"):
            await client.fetch(PAGE_URL)


@pytest.mark.unit
class TestFetchHelpers:
    def test_charset_parsing(self):
        result = FetchResult(
            url=PAGE_URL,
            final_url=PAGE_URL,
            status=200,
            headers={"content-type": 'text/html; Charset="UTF-8"'},
            body=b"",
            attempts=1,
            elapsed=0.0,
        )

        assert result.encoding == "utf-8"

    def test_missing_charset(self):
        result = FetchResult(PAGE_URL, PAGE_URL, 200, {"Content-Type": "text/html"}, b"", 1, 0.0)

        assert result.encoding is None

    def test_validate_url(self):
        validate_url("http://example.com/")
        with pytest.raises(NetworkError):
            validate_url("/relative/path")

    def test_user_agent_rotation(self):
        assert UserAgentRotator(fixed="Fixed/1.0").get() == "Fixed/1.0"
        assert UserAgentRotator().get() in DESKTOP_AGENTS

    def test_header_overrides(self):
        headers = browser_headers(PAGE_URL, "UA", "zh-CN", {"Referer": "https://example.com/book/1/"})

        assert headers["User-Agent"] == "UA"
        assert headers["Referer"] == "https://example.com/book/1/"

    def test_referer_for(self):
        assert referer_for("https://example.com:8080/a/b?c=1") == "https://example.com:8080/"
        assert referer_for("not a url") == ""
