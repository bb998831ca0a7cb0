"""
Value types returned by the book parser.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class ChapterRef:
    """
    A chapter discovered on an index page.

    Two references are the same chapter when their URLs match, whatever the
    anchor text said.
    """

    title: str = field(compare=False)
    url: str


@dataclass(frozen=True)
class BookSummary:
    title: str
    author: str
