"""
End-to-end reading flow: fetch, encoding resolution, extraction, caching.

Pages are served by aioresponses; everything below the HTTP layer is real.
"""

import asyncio
import threading

import pytest
import pytest_asyncio
from aioresponses import aioresponses

from shelfreader.exceptions import NetworkError, ParseError
from shelfreader.models import ChapterRef
from shelfreader.parser import BookParser, collect_links
from shelfreader.service import PLACEHOLDER_PREFIX, ChapterPreloader, ChapterService
from shelfreader.storage import chapter_cache

BOOK_URL = "https://example.com/book/1/"
BOOK_ID = "book-1"

PARAGRAPH = "夜色如墨，长街上空无一人。他推开客栈的门，冷风灌了进来。掌柜抬起头，打量了他一眼。"


def chapter_page(number: int) -> bytes:
    body = "<br>".join(f"第{number}章的正文第{line}段。{PARAGRAPH}" for line in range(3))
    return f"<html><body><div id='content'>{body}</div></body></html>".encode("utf-8")


def chapter_url(number: int) -> str:
    return f"{BOOK_URL}{number}.html"


def chapter_ref(number: int) -> ChapterRef:
    return ChapterRef(title=f"第{number}章", url=chapter_url(number))


@pytest_asyncio.fixture
async def parser(fetcher, test_config):
    book_parser = BookParser(fetcher, test_config)
    yield book_parser
    await book_parser.close()


@pytest.fixture
def cache(make_cache_store):
    return make_cache_store()


@pytest.mark.integration
class TestBookParser:
    """Parsing live pages."""

    @pytest.mark.asyncio
    async def test_gbk_chapter_without_declared_charset(self, parser, chapter_html):
        """A GBK page served without a charset is decoded, located and cleaned."""
        with aioresponses() as m:
            m.get(chapter_url(1), status=200, body=chapter_html.encode("gbk"), content_type="text/html")

            text = await parser.parse_chapter_content(chapter_url(1), "第一章 风起")

        assert text.startswith("    夜色如墨")
        assert "“掌柜的，还有房间吗？”" in text
        assert "笔趣阁" not in text
        assert "www" not in text
        assert "广告" not in text
        assert "第一章" not in text
        assert "Copyright" not in text
        assert all(paragraph.startswith("    ") for paragraph in text.split("\n\n"))

    @pytest.mark.asyncio
    async def test_mislabelled_charset_is_overruled(self, parser, chapter_html):
        with aioresponses() as m:
            m.get(
                chapter_url(1),
                status=200,
                body=chapter_html.encode("gbk"),
                content_type="text/html; charset=utf-8",
            )

            text = await parser.parse_chapter_content(chapter_url(1))

        assert "长街上空无一人" in text

    @pytest.mark.asyncio
    async def test_page_without_content_raises_parse_error(self, parser):
        with aioresponses() as m:
            m.get(chapter_url(1), status=200, body=b"<html><body><p>404</p></body></html>")

            with pytest.raises(ParseError):
                await parser.parse_chapter_content(chapter_url(1))

    @pytest.mark.asyncio
    async def test_book_summary(self, parser, index_html):
        with aioresponses() as m:
            m.get(BOOK_URL, status=200, body=index_html.encode("utf-8"), content_type="text/html; charset=utf-8")

            summary = await parser.parse_book(BOOK_URL)

        assert summary.title == "长夜"
        assert summary.author == "夜行人"

    @pytest.mark.asyncio
    async def test_chapter_list(self, parser, index_html):
        with aioresponses() as m:
            m.get(BOOK_URL, status=200, body=index_html.encode("gbk"), content_type="text/html")

            chapters = await parser.parse_chapter_list(BOOK_URL)

        assert [chapter.url for chapter in chapters] == [chapter_url(1), chapter_url(2), chapter_url(3)]
        assert [chapter.title for chapter in chapters] == ["第一章 风起", "第二章 夜雨", "第三章 归人"]

    @pytest.mark.asyncio
    async def test_chapter_list_follows_table_of_contents_link(self, parser, index_html):
        landing = (
            "<html><body><a href='/'>首页</a>"
            "<a href='/book/1/missing.html'>章节目录（旧）</a>"
            "<a href='/book/1/list.html'>查看完整目录</a></body></html>"
        )
        with aioresponses() as m:
            m.get(BOOK_URL, status=200, body=landing.encode("utf-8"))
            m.get(BOOK_URL + "missing.html", status=404)
            m.get(BOOK_URL + "list.html", status=200, body=index_html.encode("utf-8"))

            chapters = await parser.parse_chapter_list(BOOK_URL)

        assert len(chapters) == 3
        assert chapters[2].url == chapter_url(3)

    @pytest.mark.asyncio
    async def test_no_chapters(self, parser):
        with aioresponses() as m:
            m.get(BOOK_URL, status=200, body="<html><body><a href='/'>首页</a></body></html>".encode("utf-8"))

            assert await parser.parse_chapter_list(BOOK_URL) == []

    @pytest.mark.asyncio
    async def test_network_errors_propagate(self, parser):
        with aioresponses() as m:
            m.get(chapter_url(1), status=404)

            with pytest.raises(NetworkError):
                await parser.parse_chapter_content(chapter_url(1))


@pytest.mark.integration
class TestCollectLinks:
    def test_links_are_deduplicated_and_filtered(self, index_html):
        chapters, toc_urls = collect_links(index_html, BOOK_URL)

        assert len(chapters) == 3
        assert len(set(chapters)) == 3
        assert toc_urls == []

    def test_page_own_url_is_skipped(self):
        html = f"<a href='{BOOK_URL}'>第一章 风起</a><a href='{BOOK_URL}#list'>第二章</a>"

        assert collect_links(html, BOOK_URL) == ([], [])

    def test_toc_link_that_is_a_chapter_title_stays_a_chapter(self):
        html = "<a href='/book/1/9.html'>第九章 分卷</a>"

        chapters, toc_urls = collect_links(html, BOOK_URL)

        assert [chapter.url for chapter in chapters] == [chapter_url(9)]
        assert toc_urls == []


@pytest.mark.integration
class TestChapterService:
    """Cache-first reads with stale fallback and placeholders."""

    @pytest.mark.asyncio
    async def test_network_read_is_cached(self, parser, cache):
        service = ChapterService(parser, cache)
        with aioresponses() as m:
            m.get(chapter_url(1), status=200, body=chapter_page(1))

            text = await service.get_content(BOOK_ID, chapter_ref(1))
            # Served from cache; aioresponses would reject a second request
            again = await service.get_content(BOOK_ID, chapter_ref(1))

        assert "第1章的正文第0段" in text
        assert again == text
        assert cache.get(BOOK_ID, chapter_url(1)) == text

    @pytest.mark.asyncio
    async def test_stale_copy_served_when_network_fails(self, parser, cache):
        cache.put(BOOK_ID, chapter_url(1), "    旧的正文。")
        service = ChapterService(parser, cache)
        with aioresponses() as m:
            m.get(chapter_url(1), status=500, repeat=True)

            text = await service.refresh(BOOK_ID, chapter_ref(1))

        assert text == "    旧的正文。"

    @pytest.mark.asyncio
    async def test_placeholder_when_nothing_is_available(self, parser, cache):
        service = ChapterService(parser, cache)
        with aioresponses() as m:
            m.get(chapter_url(1), status=404)

            text = await service.get_content(BOOK_ID, chapter_ref(1))

        assert text == f"{PLACEHOLDER_PREFIX}: HTTP 404"
        assert cache.get_fallback(BOOK_ID, chapter_url(1)) is None

    @pytest.mark.asyncio
    async def test_parse_failure_placeholder(self, parser, cache):
        service = ChapterService(parser, cache)
        with aioresponses() as m:
            m.get(chapter_url(1), status=200, body=b"<html><body></body></html>")

            text = await service.get_content(BOOK_ID, chapter_ref(1))

        assert text.startswith(PLACEHOLDER_PREFIX)

    @pytest.mark.asyncio
    async def test_refresh_replaces_cached_copy(self, parser, cache):
        cache.put(BOOK_ID, chapter_url(1), "    旧的正文。")
        service = ChapterService(parser, cache)
        with aioresponses() as m:
            m.get(chapter_url(1), status=200, body=chapter_page(1))

            text = await service.refresh(BOOK_ID, chapter_ref(1))

        assert "第1章的正文" in text
        assert cache.get(BOOK_ID, chapter_url(1)) == text

    @pytest.mark.asyncio
    async def test_cache_io_runs_off_the_event_loop(self, parser, cache, monkeypatch):
        service = ChapterService(parser, cache)
        loop_thread = threading.get_ident()
        write_threads = []
        real_write = chapter_cache.atomic_write_text

        def recording_write(path, content):
            write_threads.append(threading.get_ident())
            real_write(path, content)

        monkeypatch.setattr(chapter_cache, "atomic_write_text", recording_write)
        with aioresponses() as m:
            m.get(chapter_url(1), status=200, body=chapter_page(1))

            await service.get_content(BOOK_ID, chapter_ref(1))

        assert write_threads
        assert loop_thread not in write_threads


@pytest.mark.integration
class TestChapterPreloader:
    """Background cache warming."""

    def test_plan_orders_ahead_before_behind(self, cache, test_config):
        test_config.preload.count = 2
        test_config.preload.behind = 1
        preloader = ChapterPreloader(None, cache, test_config.preload)

        assert preloader.plan(10, 4) == [5, 6, 3]
        assert preloader.plan(5, 4) == [3]
        assert preloader.plan(5, 0) == [1, 2]
        assert preloader.plan(0, 0) == []
        assert preloader.plan(3, 7) == []

    @pytest.mark.asyncio
    async def test_preload_skips_cached_and_survives_failures(self, parser, cache, test_config):
        test_config.preload.count = 3
        test_config.preload.behind = 1
        preloader = ChapterPreloader(parser, cache, test_config.preload)
        chapters = [chapter_ref(number) for number in range(1, 6)]
        cache.put(BOOK_ID, chapter_url(3), "    已缓存。")

        with aioresponses() as m:
            m.get(chapter_url(4), status=200, body=chapter_page(4))
            m.get(chapter_url(5), status=404)
            m.get(chapter_url(1), status=200, body=chapter_page(1))

            loaded = await preloader.preload(BOOK_ID, chapters, 1)

        assert loaded == 2
        assert cache.get(BOOK_ID, chapter_url(3)) == "    已缓存。"
        assert cache.get(BOOK_ID, chapter_url(5)) is None
        assert "第4章" in cache.get(BOOK_ID, chapter_url(4))
        assert "第1章" in cache.get(BOOK_ID, chapter_url(1))

    @pytest.mark.asyncio
    async def test_disabled_preloader_does_nothing(self, parser, cache, test_config):
        test_config.preload.enabled = False
        preloader = ChapterPreloader(parser, cache, test_config.preload)

        assert await preloader.preload(BOOK_ID, [chapter_ref(1), chapter_ref(2)], 0) == 0

    @pytest.mark.asyncio
    async def test_background_task(self, parser, cache, test_config):
        test_config.preload.count = 1
        test_config.preload.behind = 0
        preloader = ChapterPreloader(parser, cache, test_config.preload)

        with aioresponses() as m:
            m.get(chapter_url(2), status=200, body=chapter_page(2))

            task = await preloader.start(BOOK_ID, [chapter_ref(1), chapter_ref(2)], 0)
            assert preloader.running
            assert await preloader.wait() == 1

        assert task.done()
        assert not preloader.running
        assert await preloader.wait() == 0
        assert cache.get(BOOK_ID, chapter_url(2)) is not None

    @pytest.mark.asyncio
    async def test_stop_cancels_and_awaits_the_task(self, parser, cache, test_config):
        test_config.preload.count = 1
        test_config.preload.behind = 0
        preloader = ChapterPreloader(parser, cache, test_config.preload)
        started = asyncio.Event()

        async def slow(url, **kwargs):
            started.set()
            await asyncio.sleep(30)

        with aioresponses() as m:
            m.get(chapter_url(2), callback=slow)

            task = await preloader.start(BOOK_ID, [chapter_ref(1), chapter_ref(2)], 0)
            await asyncio.wait_for(started.wait(), timeout=5)
            await preloader.close()

        assert task.cancelled()
        assert not preloader.running
        assert cache.get(BOOK_ID, chapter_url(2)) is None

    @pytest.mark.asyncio
    async def test_restart_replaces_running_preload(self, parser, cache, test_config):
        test_config.preload.count = 1
        test_config.preload.behind = 0
        preloader = ChapterPreloader(parser, cache, test_config.preload)
        started = asyncio.Event()

        async def slow(url, **kwargs):
            started.set()
            await asyncio.sleep(30)

        with aioresponses() as m:
            m.get(chapter_url(2), callback=slow)
            m.get(chapter_url(3), status=200, body=chapter_page(3))

            first = await preloader.start(BOOK_ID, [chapter_ref(1), chapter_ref(2)], 0)
            await asyncio.wait_for(started.wait(), timeout=5)
            await preloader.start(BOOK_ID, [chapter_ref(2), chapter_ref(3)], 0)

            assert first.cancelled()
            assert await preloader.wait() == 1
