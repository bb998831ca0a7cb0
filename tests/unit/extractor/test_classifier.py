"""
Tests for chapter title grammar and chapter link classification.
"""

import pytest

from shelfreader.extractor.chapter_titles import is_chapter_title, matches_title_grammar
from shelfreader.extractor.classifier import is_chapter_link, is_toc_link, passes_fallback


@pytest.mark.unit
class TestChapterTitles:
    """Title grammar."""

    @pytest.mark.parametrize(
        "title",
        ["第十章 风起", "第123章 归来", "第三卷 北境", "序章", "楔子", "番外一 旧梦", "后记", "Chapter 12", "1、开端", "插曲"],
    )
    def test_recognized_titles(self, title):
        assert is_chapter_title(title)

    @pytest.mark.parametrize("title", ["登录", "最新章节", "下一章", "加入书架", "插入书签", "", "   "])
    def test_rejected_titles(self, title):
        assert not is_chapter_title(title)

    def test_overlong_title_is_rejected(self):
        title = "第一章" + "长" * 60

        assert matches_title_grammar(title)
        assert not is_chapter_title(title)


@pytest.mark.unit
class TestChapterLinks:
    """Three-signal link classification."""

    def test_chapter_title_wins_for_any_href(self):
        assert is_chapter_link("/whatever", "第十章 风起")

    def test_chapter_url_shape(self):
        assert is_chapter_link("/read/8812/", "风起云涌")
        assert is_chapter_link("/12/3456", "无题")

    def test_navigation_link_is_rejected(self):
        assert not is_chapter_link("/login.php", "登录")
        assert not is_chapter_link("/", "首页")

    def test_fallback_needs_digits_and_sane_title(self):
        assert passes_fallback("/abc/8812", "风起云涌")
        assert not passes_fallback("/abc/", "风起云涌")
        assert not passes_fallback("/login?id=3", "风起云涌")
        assert not passes_fallback("/abc/8812", "风")
        assert not passes_fallback("/abc/8812", "排行榜")

    def test_fallback_signal_alone_is_enough(self):
        assert is_chapter_link("/abc/8812", "风起云涌")

    def test_empty_inputs(self):
        assert not is_chapter_link("", "第一章")
        assert not is_chapter_link("/book/1.html", "")
        assert not is_chapter_link("/book/1.html", "   ")


@pytest.mark.unit
class TestTocLinks:
    def test_toc_text(self):
        assert is_toc_link("查看全部章节")
        assert is_toc_link("目录")
        assert is_toc_link("分卷阅读")

    def test_other_text(self):
        assert not is_toc_link("加入书架")
        assert not is_toc_link("")
