"""
Chapter text normalization.

Five ordered passes turn raw block text into reader-ready paragraphs:

1. strip leftover markup (scripts, styles, links, tags, whitespace entities)
2. strip ad signatures, URLs and site watermarks
3. re-segment into one sentence group per line
4. drop lines that repeat the chapter title
5. format paragraphs: indent, blank line between paragraphs, single line
   break inside one continuing quotation, centered scene breaks

Every pass maps its own output to itself, so normalizing normalized text is
a no-op.
"""

from __future__ import annotations

import re
from typing import List, Optional

import structlog

from .chapter_titles import has_navigation_word, matches_title_grammar

logger = structlog.get_logger(__name__)

INDENT = "    "
SCENE_BREAK = "═" * 14
CENTERED_SCENE_BREAK = " " * 12 + SCENE_BREAK

_MARKUP_PATTERNS = (
    (re.compile(r"<script\b[^>]*>.*?</script\s*>", re.IGNORECASE | re.DOTALL), ""),
    (re.compile(r"<style\b[^>]*>.*?</style\s*>", re.IGNORECASE | re.DOTALL), ""),
    (re.compile(r"<a\b[^>]*>.*?</a\s*>", re.IGNORECASE | re.DOTALL), ""),
    (re.compile(r"<br\s*/?>|</p\s*>", re.IGNORECASE), "\n"),
    (re.compile(r"<[^<>]*>"), ""),
)
_WHITESPACE_ENTITIES = re.compile(r"&(?:nbsp|ensp|emsp|thinsp);|&#(?:160|8194|8195|12288);", re.IGNORECASE)

_AD_PATTERNS = (
    re.compile(r"最新章节！"),
    re.compile(r"https?://[!-~]+", re.IGNORECASE),
    re.compile(r"www\.[!-~]+", re.IGNORECASE),
    re.compile(r"[\w.-]+\.(?:com|net|org|xyz|cc|info|top|la)\b[!-~]*", re.IGNORECASE | re.ASCII),
    re.compile(r"(?:广告|推广)[^，。！？\n]*"),
    re.compile(r"(?:八八中文网|88中文网|求书网|新笔趣阁|笔趣阁|顶点小说|番茄小说)[^，。！？\n]*"),
)

TERMINATORS = frozenset("。！？!?")
OPEN_QUOTES = frozenset("“「『")
CLOSE_QUOTES = frozenset("”」』")
STRAIGHT_QUOTE = '"'
DIALOGUE_OPENERS = tuple(OPEN_QUOTES) + (STRAIGHT_QUOTE,)

_SCENE_BREAK_LINE = re.compile(r"^(?:(?:[*＊] ?){3,}|(?:[-－] ?){3,}|[═◇◆☆★~～]{3,})$")
_HORIZONTAL_SPACE = re.compile(r"\s+")

# Longer lines are narration even when they open like a title.
MAX_TITLE_LINE_LENGTH = 30


class _QuoteState:
    """Tracks whether the text scanned so far is inside a quotation."""

    def __init__(self) -> None:
        self.depth = 0
        self.straight_open = False

    @property
    def open(self) -> bool:
        return self.depth > 0 or self.straight_open

    def feed(self, ch: str) -> None:
        if ch in OPEN_QUOTES:
            self.depth += 1
        elif ch in CLOSE_QUOTES:
            self.depth = max(0, self.depth - 1)
        elif ch == STRAIGHT_QUOTE:
            self.straight_open = not self.straight_open


def strip_markup(text: str) -> str:
    """Pass 1: remove markup remnants until none are left."""
    while True:
        stripped = text
        for pattern, replacement in _MARKUP_PATTERNS:
            stripped = pattern.sub(replacement, stripped)
        stripped = _WHITESPACE_ENTITIES.sub(" ", stripped)
        if stripped == text:
            return stripped
        text = stripped


def strip_ads(text: str) -> str:
    """Pass 2: remove ad signatures, URLs and site watermarks."""
    for pattern in _AD_PATTERNS:
        text = pattern.sub("", text)
    return text


def _split_sentences(line: str) -> List[str]:
    pieces: List[str] = []
    quotes = _QuoteState()
    start = 0
    length = len(line)
    for index, ch in enumerate(line):
        quotes.feed(ch)
        if quotes.open:
            continue
        ends_sentence = ch in TERMINATORS or (ch in CLOSE_QUOTES and index > 0 and line[index - 1] in TERMINATORS)
        if not ends_sentence:
            continue
        following = line[index + 1] if index + 1 < length else ""
        if not following or following in TERMINATORS or following in CLOSE_QUOTES:
            continue
        pieces.append(line[start : index + 1])
        start = index + 1
    pieces.append(line[start:])
    return [piece.strip() for piece in pieces if piece.strip()]


def segment(text: str) -> List[str]:
    """Pass 3: one sentence group per line, whitespace collapsed, blank lines dropped."""
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    lines: List[str] = []
    for raw_line in text.split("\n"):
        line = _HORIZONTAL_SPACE.sub(" ", raw_line).strip()
        if line:
            lines.extend(_split_sentences(line))
    return lines


def is_title_line(line: str, title: Optional[str] = None) -> bool:
    if title and _HORIZONTAL_SPACE.sub(" ", title).strip() == line:
        return True
    if len(line) > MAX_TITLE_LINE_LENGTH or line.endswith("。") or has_navigation_word(line):
        return False
    return matches_title_grammar(line)


def drop_title_lines(lines: List[str], title: Optional[str] = None) -> List[str]:
    """Pass 4: remove lines repeating the chapter heading."""
    return [line for line in lines if not is_title_line(line, title)]


def is_scene_break(line: str) -> bool:
    return bool(_SCENE_BREAK_LINE.match(line))


def format_paragraphs(lines: List[str]) -> str:
    """
    Pass 5: lay lines out as paragraphs.

    Paragraphs are indented and separated by one blank line. A line that
    continues a quotation left open by the previous line belongs to the same
    dialogue turn and follows it directly. Scene breaks become a centered
    divider.
    """
    out: List[str] = []
    quotes = _QuoteState()
    for line in lines:
        if is_scene_break(line):
            if out:
                out.append("\n\n")
            out.append(CENTERED_SCENE_BREAK)
            quotes = _QuoteState()
            continue
        if out:
            out.append("\n" if quotes.open else "\n\n")
        out.append(INDENT + line)
        for ch in line:
            quotes.feed(ch)
    return "".join(out)


class TextNormalizer:
    """Applies the five normalization passes in order."""

    def normalize(self, text: str, title: Optional[str] = None) -> str:
        if not text or not text.strip():
            return ""
        # Removing an ad can splice a new tag or watermark together, so the
        # two cleanup passes repeat until neither changes the text. Every
        # change shortens the text, which bounds the loop.
        while True:
            cleaned = strip_ads(strip_markup(text))
            if cleaned == text:
                break
            text = cleaned
        lines = segment(text)
        lines = drop_title_lines(lines, title)
        result = format_paragraphs(lines)
        logger.debug("Normalized text", input_length=len(text), output_length=len(result), paragraphs=len(lines))
        return result


def normalize(text: str, title: Optional[str] = None) -> str:
    """Module-level shortcut for ``TextNormalizer().normalize``."""
    return TextNormalizer().normalize(text, title)
