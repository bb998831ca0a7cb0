"""
Chapter reading with cache-first lookup, stale fallback and background preloading.

A read never raises for network or extraction trouble. It walks down a fixed
chain and returns the first thing that works:

    fresh cache -> network (written through) -> stale cache -> placeholder
"""

from __future__ import annotations

import asyncio
from typing import List, Optional, Sequence

import structlog
from structlog.contextvars import bound_contextvars

from shelfreader.config.config import PreloadConfig
from shelfreader.exceptions import NetworkError, ParseError, ShelfReaderError
from shelfreader.models import ChapterRef
from shelfreader.observability.metrics import METRICS
from shelfreader.parser import BookParser
from shelfreader.storage.chapter_cache import ChapterCacheStore

logger = structlog.get_logger(__name__)

PLACEHOLDER_PREFIX = "获取章节内容失败"


def failure_reason(exc: BaseException) -> str:
    """Short reason for a failed read, without the URL and attempt details."""
    return str(exc.args[0]) if exc.args else type(exc).__name__


def placeholder(exc: BaseException) -> str:
    return f"{PLACEHOLDER_PREFIX}: {failure_reason(exc)}"


def chapter_id(chapter: ChapterRef) -> str:
    """Cache key of a chapter; the URL identifies it."""
    return chapter.url


class ChapterService:
    """Serves chapter text to readers."""

    def __init__(self, parser: BookParser, cache: ChapterCacheStore) -> None:
        self.parser = parser
        self.cache = cache
        self.logger = logger.bind(component="ChapterService")

    async def get_content(self, book_id: str, chapter: ChapterRef) -> str:
        """Chapter text from the freshest source available."""
        with bound_contextvars(book_id=book_id):
            cached = await asyncio.to_thread(self.cache.get, book_id, chapter_id(chapter))
            if cached is not None:
                METRICS["chapter_reads_total"].labels(source="cache").inc()
                self.logger.debug("Chapter served from cache", chapter=chapter.title)
                return cached
            return await self._fetch(book_id, chapter)

    async def refresh(self, book_id: str, chapter: ChapterRef) -> str:
        """Refetch a chapter even when a fresh cache entry exists."""
        with bound_contextvars(book_id=book_id):
            return await self._fetch(book_id, chapter)

    async def _fetch(self, book_id: str, chapter: ChapterRef) -> str:
        try:
            text = await self.parser.parse_chapter_content(chapter.url, chapter.title)
        except (NetworkError, ParseError) as e:
            stale = await asyncio.to_thread(self.cache.get_fallback, book_id, chapter_id(chapter))
            if stale is not None:
                METRICS["chapter_reads_total"].labels(source="stale").inc()
                self.logger.warning("Serving stale chapter", chapter=chapter.title, url=chapter.url, error=str(e))
                return stale
            METRICS["chapter_reads_total"].labels(source="placeholder").inc()
            self.logger.error("Chapter unavailable", chapter=chapter.title, url=chapter.url, error=str(e))
            return placeholder(e)

        await asyncio.to_thread(self.cache.put, book_id, chapter_id(chapter), text)
        METRICS["chapter_reads_total"].labels(source="network").inc()
        self.logger.info("Chapter fetched", chapter=chapter.title, length=len(text))
        return text


class ChapterPreloader:
    """
    Warms the cache around the reader's position.

    Chapters after the current one are loaded first, nearest first, followed
    by a few before it. Already cached chapters are skipped and failures are
    only logged.
    """

    def __init__(self, parser: BookParser, cache: ChapterCacheStore, config: Optional[PreloadConfig] = None) -> None:
        self.parser = parser
        self.cache = cache
        self.config = config or PreloadConfig()
        self._task: Optional[asyncio.Task[int]] = None
        self.logger = logger.bind(component="ChapterPreloader")

    def plan(self, total: int, current_index: int) -> List[int]:
        """Indices to warm, in load order."""
        if total <= 0 or not 0 <= current_index < total:
            return []
        ahead = range(current_index + 1, min(total, current_index + 1 + self.config.count))
        behind = range(current_index - 1, max(-1, current_index - 1 - self.config.behind), -1)
        return list(ahead) + list(behind)

    async def preload(self, book_id: str, chapters: Sequence[ChapterRef], current_index: int) -> int:
        """
        Load uncached chapters near ``current_index`` into the cache.

        Returns:
            Number of chapters fetched and cached
        """
        if not self.config.enabled or not self.cache.enabled:
            return 0
        delay = self.config.delay_ms / 1000
        loaded = 0
        fetched_any = False

        with bound_contextvars(book_id=book_id):
            for index in self.plan(len(chapters), current_index):
                chapter = chapters[index]
                if await asyncio.to_thread(self.cache.get, book_id, chapter_id(chapter)) is not None:
                    continue
                if fetched_any and delay:
                    await asyncio.sleep(delay)
                fetched_any = True
                try:
                    text = await self.parser.parse_chapter_content(chapter.url, chapter.title)
                except ShelfReaderError as e:
                    self.logger.warning("Preload failed", index=index, url=chapter.url, error=str(e))
                    continue
                if await asyncio.to_thread(self.cache.put, book_id, chapter_id(chapter), text):
                    loaded += 1

            self.logger.info("Preload finished", current_index=current_index, loaded=loaded)
        return loaded

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self, book_id: str, chapters: Sequence[ChapterRef], current_index: int) -> asyncio.Task[int]:
        """Run ``preload`` in the background, replacing any preload still running."""
        await self.stop()
        self._task = asyncio.create_task(
            self.preload(book_id, list(chapters), current_index), name=f"preload-{book_id}"
        )
        return self._task

    async def wait(self) -> int:
        """Wait for the background preload to finish; returns the chapters it cached."""
        task, self._task = self._task, None
        if task is None:
            return 0
        return await task

    async def stop(self) -> None:
        """Cancel the background preload and wait until it has unwound."""
        task, self._task = self._task, None
        if task is None:
            return
        if not task.done():
            task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            self.logger.debug("Preload cancelled")
        except Exception as e:
            self.logger.error("Preload task failed", error=str(e))

    async def close(self) -> None:
        await self.stop()
