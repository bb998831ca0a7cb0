"""
Book parsing: fetch a page, resolve its encoding and extract what was asked for.

Network I/O stays on the event loop. Decoding, parsing, scoring and
normalization are CPU-bound and run on a dedicated thread pool so a slow page
never stalls other fetches.
"""

from __future__ import annotations

import asyncio
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, List, Optional, Tuple, TypeVar
from urllib.parse import urldefrag, urljoin, urlparse

import structlog

from shelfreader.config import Config
from shelfreader.crawler.fetcher import FetchResult, RetryingFetcher
from shelfreader.exceptions import NetworkError, ParseError
from shelfreader.extractor.blocks import parse_document
from shelfreader.extractor.chapter_titles import is_chapter_title
from shelfreader.extractor.classifier import is_chapter_link, is_toc_link
from shelfreader.extractor.encoding import EncodingResolver, ResolvedDocument
from shelfreader.extractor.locator import ContentBlockLocator
from shelfreader.extractor.metadata import extract_author, extract_title
from shelfreader.extractor.normalizer import TextNormalizer
from shelfreader.models import BookSummary, ChapterRef
from shelfreader.observability.metrics import METRICS

logger = structlog.get_logger(__name__)

T = TypeVar("T")


def link_target(url: str) -> str:
    """Path and query of an absolute URL, the part that carries chapter numbering."""
    parsed = urlparse(url)
    return f"{parsed.path}?{parsed.query}" if parsed.query else parsed.path


def collect_links(html: str, base_url: str) -> Tuple[List[ChapterRef], List[str]]:
    """
    Classify every anchor on a page.

    Returns:
        Chapter references in discovery order, de-duplicated by URL, and the
        URLs of links that look like table-of-contents pages
    """
    tree = parse_document(html)
    page_url = urldefrag(base_url).url
    chapters: List[ChapterRef] = []
    toc_urls: List[str] = []
    seen = set()

    for anchor in tree.css("a[href]"):
        href = (anchor.attributes.get("href") or "").strip()
        if not href or href.startswith("#") or href.lower().startswith("javascript:"):
            continue
        absolute = urldefrag(urljoin(base_url, href)).url
        if urlparse(absolute).scheme not in ("http", "https") or absolute == page_url:
            continue
        title = " ".join(anchor.text(deep=True, separator=" ").split())

        if not is_chapter_title(title) and is_toc_link(title):
            if absolute not in toc_urls:
                toc_urls.append(absolute)
            continue
        if absolute in seen or not is_chapter_link(link_target(absolute), title):
            continue
        seen.add(absolute)
        chapters.append(ChapterRef(title=title, url=absolute))

    return chapters, toc_urls


class BookParser:
    """
    Extracts book metadata, chapter lists and chapter text from live pages.

    The fetcher is shared and owned by the caller; the thread pool belongs to
    the parser and is shut down by ``close``.
    """

    def __init__(
        self,
        fetcher: RetryingFetcher,
        config: Optional[Config] = None,
        *,
        locator: Optional[ContentBlockLocator] = None,
        resolver: Optional[EncodingResolver] = None,
        normalizer: Optional[TextNormalizer] = None,
    ) -> None:
        self.config = config or Config()
        self.fetcher = fetcher
        self.locator = locator or ContentBlockLocator(self.config.extraction)
        self.resolver = resolver or EncodingResolver(self.locator, self.config.encoding)
        self.normalizer = normalizer or TextNormalizer()
        self.executor = ThreadPoolExecutor(
            max_workers=self.config.extraction.worker_threads,
            thread_name_prefix="shelfreader-extract",
        )
        self.logger = logger.bind(component="BookParser")

    async def _run(self, func: Callable[..., T], *args: object) -> T:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self.executor, func, *args)

    async def _load(self, url: str, *, whole_page: bool) -> Tuple[FetchResult, ResolvedDocument]:
        result = await self.fetcher.fetch(url)
        resolved = await self._run(self._resolve, result, whole_page)
        return result, resolved

    def _resolve(self, result: FetchResult, whole_page: bool) -> ResolvedDocument:
        return self.resolver.resolve(result.body, result.encoding, whole_page=whole_page)

    async def parse_book(self, url: str) -> BookSummary:
        """Title and author of the book whose index page is ``url``."""
        _, resolved = await self._load(url, whole_page=True)
        summary = await self._run(self._summarize, resolved.text)
        self.logger.info("Parsed book", url=url, title=summary.title, author=summary.author)
        return summary

    @staticmethod
    def _summarize(html: str) -> BookSummary:
        tree = parse_document(html)
        return BookSummary(title=extract_title(tree), author=extract_author(tree))

    async def _links_of(self, url: str) -> Tuple[List[ChapterRef], List[str]]:
        result, resolved = await self._load(url, whole_page=True)
        return await self._run(collect_links, resolved.text, result.final_url or url)

    async def parse_chapter_list(self, url: str) -> List[ChapterRef]:
        """
        Ordered chapter references found on ``url``.

        When the page itself lists no chapters, links that name a table of
        contents are followed in page order and the first one that yields
        chapters provides the result.
        """
        chapters, toc_urls = await self._links_of(url)
        if chapters:
            self.logger.info("Parsed chapter list", url=url, chapters=len(chapters))
            return chapters

        for toc_url in toc_urls:
            self.logger.debug("Trying table of contents page", url=url, toc_url=toc_url)
            try:
                chapters, _ = await self._links_of(toc_url)
            except NetworkError as e:
                self.logger.warning("Table of contents page failed", toc_url=toc_url, error=str(e))
                continue
            if chapters:
                self.logger.info("Parsed chapter list", url=url, toc_url=toc_url, chapters=len(chapters))
                return chapters

        self.logger.warning("No chapters found", url=url, toc_candidates=len(toc_urls))
        return []

    async def parse_chapter_content(self, url: str, title: Optional[str] = None) -> str:
        """
        Normalized text of the chapter at ``url``.

        Raises:
            NetworkError: if the page could not be fetched
            ParseError: if no candidate encoding yields a content block
        """
        start = time.perf_counter()
        result, resolved = await self._load(url, whole_page=False)
        if resolved.parse_failed:
            raise ParseError(url, encoding=resolved.encoding)
        text = await self._run(self.normalizer.normalize, resolved.block_text, title)
        METRICS["extraction_duration_seconds"].observe(time.perf_counter() - start)
        if not text:
            raise ParseError(url, "content block is empty after normalization", encoding=resolved.encoding)
        self.logger.debug(
            "Parsed chapter",
            url=url,
            encoding=resolved.encoding,
            declared=result.encoding,
            score=resolved.score,
            length=len(text),
        )
        return text

    async def close(self) -> None:
        self.executor.shutdown(wait=True)
        self.logger.debug("Extraction pool shut down")
