"""
Chapter link classification from an anchor's href and text.
"""

from __future__ import annotations

import re
from typing import Pattern, Tuple

import structlog

from .chapter_titles import MAX_TITLE_LENGTH, is_chapter_title

logger = structlog.get_logger(__name__)

URL_PATTERNS: Tuple[Pattern[str], ...] = tuple(
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"/chapter/",
        r"/read/",
        r"/book/",
        r"/\d+\.(?:html?|shtml|aspx|php)$",
        r"chapter_\d+",
        r"/c\d+",
        r"/\d+/\d+",
    )
)

FALLBACK_TITLE_BLOCKLIST: Tuple[str, ...] = ("登录", "注册", "首页", "最新", "排行")
FALLBACK_HREF_BLOCKLIST: Tuple[str, ...] = ("javascript", "login", "register")

TOC_LINK_PATTERN = re.compile(r"目录|章节|卷章|分卷|分章")

_DIGITS = re.compile(r"\d+")


def matches_url_pattern(href: str) -> bool:
    return any(pattern.search(href) for pattern in URL_PATTERNS)


def passes_fallback(href: str, title: str) -> bool:
    """Conservative last signal: a numeric token in the href AND a sane title."""
    lowered = href.lower()
    href_ok = bool(_DIGITS.search(href)) and not any(word in lowered for word in FALLBACK_HREF_BLOCKLIST)
    title_ok = 2 <= len(title) <= MAX_TITLE_LENGTH and not any(word in title for word in FALLBACK_TITLE_BLOCKLIST)
    return href_ok and title_ok


def is_chapter_link(href: str, title: str) -> bool:
    """
    Decide whether an anchor points at a chapter.

    Any of three signals is enough: a chapter-like URL shape, a title that
    follows chapter grammar, or the conservative fallback.
    """
    if not href or not title:
        return False
    title = title.strip()
    if not title:
        return False

    url_match = matches_url_pattern(href)
    title_match = is_chapter_title(title)
    if url_match or title_match:
        logger.debug("Chapter link", title=title, href=href, url_match=url_match, title_match=title_match)
        return True
    return passes_fallback(href, title)


def is_toc_link(title: str) -> bool:
    """Anchor text that points at a table-of-contents page."""
    return bool(title) and bool(TOC_LINK_PATTERN.search(title))
