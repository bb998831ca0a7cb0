"""
Book title and author discovery on index pages.

Each field is looked up in three tiers: meta tags, then conventional
elements, then a textual fallback. The first non-empty candidate wins.
"""

from __future__ import annotations

import re
from typing import List, Optional

import structlog
from selectolax.lexbor import LexborHTMLParser

from .blocks import page_text

logger = structlog.get_logger(__name__)

UNKNOWN_TITLE = "未知标题"
UNKNOWN_AUTHOR = "未知作者"

TITLE_META_KEYS: List[str] = [
    "og:title",
    "og:novel:book_name",
    "og:novel:title",
    "og:book:title",
    "title",
    "twitter:title",
]
TITLE_SELECTORS = "h1, h2.title, div.title, div.book-title, span.title"

AUTHOR_META_KEYS: List[str] = [
    "og:novel:author",
    "og:author",
    "og:book:author",
    "author",
    "twitter:creator",
]
AUTHOR_SELECTORS = "a.author, span.author, div.author, p.author"

_TITLE_SEPARATORS = re.compile(r" - |_|\|")
_BRACKETED = re.compile(r"[\(（\[【][^\)）\]】]*[\)）\]】]")
_BOOK_QUOTES = re.compile(r"[《》]")
_AUTHOR_LABEL = re.compile(r"作\s*者[：:]\s*(\S+)")
_AUTHOR_PREFIX = re.compile(r"^作\s*者[：:]\s*")


def meta_content(tree: LexborHTMLParser, key: str) -> Optional[str]:
    """Content of the first ``<meta>`` whose ``property`` or ``name`` equals ``key``."""
    for node in tree.css("meta"):
        attributes = node.attributes
        if attributes.get("property") == key or attributes.get("name") == key:
            content = (attributes.get("content") or "").strip()
            if content:
                return content
    return None


def clean_title(raw: str) -> str:
    """
    Strip site decoration from a page title.

    >>> clean_title("《长夜》最新章节 - 某某小说网")
    '长夜最新章节'
    """
    title = _TITLE_SEPARATORS.split(raw, maxsplit=1)[0]
    title = _BRACKETED.sub("", title)
    title = _BOOK_QUOTES.sub("", title)
    return " ".join(title.split())


def clean_author(raw: str) -> str:
    return " ".join(_AUTHOR_PREFIX.sub("", raw.strip()).split())


def extract_title(tree: LexborHTMLParser) -> str:
    candidates: List[str] = []
    for key in TITLE_META_KEYS:
        content = meta_content(tree, key)
        if content:
            candidates.append(content)
            break
    node = tree.css_first(TITLE_SELECTORS)
    if node is not None:
        candidates.append(node.text(deep=True, separator=" ", strip=True))
    title_node = tree.css_first("title")
    if title_node is not None:
        candidates.append(title_node.text(strip=True))

    for candidate in candidates:
        cleaned = clean_title(candidate)
        if cleaned:
            return cleaned
    logger.debug("No book title found")
    return UNKNOWN_TITLE


def extract_author(tree: LexborHTMLParser) -> str:
    for key in AUTHOR_META_KEYS:
        content = meta_content(tree, key)
        if content:
            cleaned = clean_author(content)
            if cleaned:
                return cleaned

    for node in tree.css(AUTHOR_SELECTORS):
        cleaned = clean_author(node.text(deep=True, separator=" ", strip=True))
        if cleaned:
            return cleaned

    match = _AUTHOR_LABEL.search(page_text(tree))
    if match:
        return match.group(1)
    logger.debug("No book author found")
    return UNKNOWN_AUTHOR
