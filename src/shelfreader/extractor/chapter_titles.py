"""
Grammar of chapter titles.

Covers numbered chapters in digit and Chinese numeral forms, volume markers,
prefaces, afterwords, side stories and interludes.
"""

from __future__ import annotations

import re
from typing import Pattern, Tuple

NUMERALS = "0-9０-９零〇一二两三四五六七八九十百千万亿壹贰叁肆伍陆柒捌玖拾佰仟"

MAX_TITLE_LENGTH = 50

NAVIGATION_WORDS: Tuple[str, ...] = (
    "登录",
    "注册",
    "首页",
    "最新",
    "排行",
    "书架",
    "目录",
    "上一页",
    "下一页",
    "上一章",
    "下一章",
    "返回",
)

TITLE_PATTERNS: Tuple[Pattern[str], ...] = tuple(
    re.compile(pattern)
    for pattern in (
        rf"^第[{NUMERALS}]+[章节卷集部篇回话幕]",
        r"^[序楔终尾][章话声]",
        r"^楔子",
        r"^[前序楔引]言",
        r"^[后终]记",
        rf"^[卷部篇][{NUMERALS}]+",
        r"^[上中下]篇",
        r"^番外",
        r"^特别篇",
        r"^外传",
        r"^(?:间|幕)?插(?:曲|章|话)",
        r"^(?i:chapter|chap\.?|ch\.)\s*\d+",
        r"^[0-9]+[、.．][^0-9]*$",
    )
)


def has_navigation_word(text: str) -> bool:
    return any(word in text for word in NAVIGATION_WORDS)


def matches_title_grammar(text: str) -> bool:
    """True when ``text`` starts like a chapter title; no length or vocabulary checks."""
    return any(pattern.search(text) for pattern in TITLE_PATTERNS)


def is_chapter_title(text: str) -> bool:
    """
    Decide whether ``text`` reads as a chapter title.

    >>> is_chapter_title("第十章 风起")
    True
    >>> is_chapter_title("登录")
    False
    """
    if not text:
        return False
    text = text.strip()
    if not text or len(text) > MAX_TITLE_LENGTH:
        return False
    if has_navigation_word(text):
        return False
    return matches_title_grammar(text)
