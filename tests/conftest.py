"""
Shared fixtures for the ShelfReader test suite.

Fixtures here keep every test isolated: caches and book stores live in a
per-test temporary directory, backoff jitter is seeded, and each fetcher gets
its own performance monitor.
"""

import random
import time
from pathlib import Path
from typing import AsyncGenerator, Callable, Optional

import pytest
import pytest_asyncio

from shelfreader.config import CacheConfig, Config, FetcherConfig, StorageConfig
from shelfreader.crawler.fetcher import RetryingFetcher
from shelfreader.crawler.retry import RetryPolicy
from shelfreader.observability.performance import PerformanceMonitor
from shelfreader.storage.chapter_cache import MB, ChapterCacheStore

# ============================================================================
# Pytest Configuration
# ============================================================================


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests for individual components")
    config.addinivalue_line("markers", "integration: Integration tests across modules")


# ============================================================================
# Filesystem Fixtures
# ============================================================================


@pytest.fixture
def temp_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for test data."""
    return tmp_path


# ============================================================================
# Configuration Fixtures
# ============================================================================


@pytest.fixture
def fetcher_config() -> FetcherConfig:
    """Fetcher settings with millisecond backoff so retry tests stay fast."""
    return FetcherConfig(
        timeout=2.0,
        max_retries=2,
        retry_base_delay_ms=10,
        max_delay_ms=50,
        pool_size=4,
        user_agent="TestReader/1.0",
    )


@pytest.fixture
def test_config(temp_dir: Path, fetcher_config: FetcherConfig) -> Config:
    """Full configuration rooted in the temporary directory."""
    config = Config()
    config.cache = CacheConfig(path=temp_dir / "cache", min_free_space_mb=0)
    config.storage = StorageConfig(path=temp_dir / "books")
    config.fetcher = fetcher_config
    config.preload.delay_ms = 0
    config.monitoring.enabled = False
    return config


# ============================================================================
# Network Fixtures
# ============================================================================


@pytest.fixture
def deterministic_jitter() -> random.Random:
    """Seeded random source for backoff jitter."""
    return random.Random(1234)


@pytest.fixture
def monitor() -> PerformanceMonitor:
    """A fresh performance monitor per test."""
    return PerformanceMonitor()


@pytest_asyncio.fixture
async def fetcher(
    fetcher_config: FetcherConfig, monitor: PerformanceMonitor, deterministic_jitter: random.Random
) -> AsyncGenerator[RetryingFetcher, None]:
    """Initialized fetcher with fast, deterministic backoff."""
    policy = RetryPolicy.from_config(fetcher_config, rng=deterministic_jitter)
    async with RetryingFetcher(fetcher_config, monitor=monitor, retry_policy=policy) as client:
        yield client


# ============================================================================
# Cache Fixtures
# ============================================================================


@pytest.fixture
def make_cache_store(temp_dir: Path) -> Callable[..., ChapterCacheStore]:
    """
    Build cache stores with a controllable view of free disk space.

    ``free_mb`` may be a number or a callable returning the current free
    space in MB; the default reports plenty of room.
    """

    def _factory(
        free_mb: Optional[object] = None,
        clock: Optional[Callable[[], float]] = None,
        **overrides: object,
    ) -> ChapterCacheStore:
        settings = {"path": temp_dir / "cache", "min_free_space_mb": 100, **overrides}
        store = ChapterCacheStore(CacheConfig(**settings), clock=clock or time.time)
        if free_mb is None:
            store.free_space_bytes = lambda: 10_000 * MB  # type: ignore[method-assign]
        elif callable(free_mb):
            store.free_space_bytes = lambda: int(free_mb() * MB)  # type: ignore[method-assign]
        else:
            store.free_space_bytes = lambda: int(free_mb * MB)  # type: ignore[method-assign,operator]
        return store

    return _factory


# ============================================================================
# Sample Pages
# ============================================================================

CHAPTER_BODY = """
<html>
<head><meta charset="gbk"><title>第一章 风起_长夜_笔趣阁</title></head>
<body>
<div class="nav"><a href="/">首页</a> <a href="/book/1/">目录</a></div>
<h1>第一章 风起</h1>
<div id="content">
第一章 风起<br>
　　夜色如墨，长街上空无一人。<br>
　　他推开客栈的门，冷风灌了进来。“掌柜的，还有房间吗？”<br>
　　掌柜抬起头，打量了他一眼，慢慢说道：“只剩一间了。”<br>
笔趣阁最新章节！<br>
广告：本站网址www.biquge.com<br>
</div>
<div class="footer">Copyright 2024</div>
</body>
</html>
"""

INDEX_BODY = """
<html>
<head>
<title>长夜最新章节列表_笔趣阁</title>
<meta property="og:novel:book_name" content="长夜">
<meta property="og:novel:author" content="夜行人">
</head>
<body>
<div class="header"><a href="/">首页</a> <a href="/login.php">登录</a></div>
<div id="list">
<dl>
<dd><a href="/book/1/1.html">第一章 风起</a></dd>
<dd><a href="/book/1/2.html">第二章 夜雨</a></dd>
<dd><a href="3.html">第三章 归人</a></dd>
<dd><a href="/book/1/2.html#top">第二章 夜雨</a></dd>
<dd><a href="javascript:void(0)">加入书架</a></dd>
</dl>
</div>
</body>
</html>
"""


@pytest.fixture
def chapter_html() -> str:
    return CHAPTER_BODY


@pytest.fixture
def index_html() -> str:
    return INDEX_BODY
