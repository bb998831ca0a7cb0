"""
Encoding resolution by garbage scoring.

Reading sites routinely mislabel their charset, so the declared encoding is
only a hint. Every candidate decoding is parsed, its content block located and
scored for signs of misdecoding; the cleanest candidate wins.
"""

from __future__ import annotations

import codecs
import unicodedata
from dataclasses import dataclass
from typing import List, Optional

import structlog

from shelfreader.config.config import EncodingConfig

from .blocks import block_text, page_text, parse_document
from .locator import ContentBlockLocator

logger = structlog.get_logger(__name__)

_ALLOWED_CONTROLS = frozenset("\t\n\r")
_COMPANION_EXTRA = frozenset("“”‘’…—·")


def is_ideograph(ch: str) -> bool:
    code = ord(ch)
    return (
        0x4E00 <= code <= 0x9FFF
        or 0x3400 <= code <= 0x4DBF
        or 0xF900 <= code <= 0xFAFF
        or 0x20000 <= code <= 0x2FA1F
    )


def is_companion_punctuation(ch: str) -> bool:
    """CJK and fullwidth punctuation that accompanies correctly decoded Chinese text."""
    code = ord(ch)
    return (
        0x3000 <= code <= 0x303F
        or 0xFF01 <= code <= 0xFF0F
        or 0xFF1A <= code <= 0xFF20
        or 0xFF3B <= code <= 0xFF40
        or 0xFF5B <= code <= 0xFF65
        or ch in _COMPANION_EXTRA
    )


def is_broken(ch: str) -> bool:
    """Replacement, control, private-use, unassigned or surrogate character."""
    if ch == "\ufffd":
        return True
    category = unicodedata.category(ch)
    if category == "Cc":
        return ch not in _ALLOWED_CONTROLS
    return category in ("Co", "Cn", "Cs")


def garbage_score(
    text: str,
    replacement_weight: int = 10,
    run_weight: int = 5,
    missing_punctuation_weight: int = 50,
) -> int:
    """
    Heuristic penalty for how misdecoded ``text`` looks; lower is better.

    - ``replacement_weight`` per replacement, control or unmapped character
    - ``run_weight`` per run of more than two consecutive non-ASCII characters
      that are neither ideographs, companion punctuation nor whitespace
    - ``missing_punctuation_weight`` once, when ideographs appear without any
      companion punctuation
    """
    score = 0
    run = 0
    has_ideograph = False
    has_punctuation = False

    for ch in text:
        if is_broken(ch):
            score += replacement_weight
        if is_ideograph(ch):
            has_ideograph = True
        elif is_companion_punctuation(ch):
            has_punctuation = True
        elif ord(ch) > 0x7F and not ch.isspace() and not is_broken(ch):
            run += 1
            continue
        if run > 2:
            score += run_weight
        run = 0

    if run > 2:
        score += run_weight
    if has_ideograph and not has_punctuation:
        score += missing_punctuation_weight
    return score


@dataclass(frozen=True, slots=True)
class ResolvedDocument:
    """Outcome of encoding resolution for one response body."""

    text: str
    encoding: str
    score: int
    block_text: str
    parse_failed: bool = False


def canonical_encoding(name: str) -> Optional[str]:
    try:
        return codecs.lookup(name).name
    except LookupError:
        return None


class EncodingResolver:
    """Picks the decoding of raw bytes that yields the least corrupted text."""

    def __init__(self, locator: Optional[ContentBlockLocator] = None, config: Optional[EncodingConfig] = None):
        self.locator = locator or ContentBlockLocator()
        self.config = config or EncodingConfig()

    def candidates_for(self, declared: Optional[str] = None) -> List[str]:
        """Trial order: the declared charset first when it is new, then the configured list."""
        candidates: List[str] = []
        seen = set()
        configured = list(self.config.candidates)
        names = configured
        if declared and canonical_encoding(declared) not in {canonical_encoding(name) for name in configured}:
            names = [declared] + configured
        for name in names:
            canonical = canonical_encoding(name)
            if canonical is None or canonical in seen:
                continue
            seen.add(canonical)
            candidates.append(name.lower())
        return candidates

    def score(self, text: str) -> int:
        return garbage_score(
            text[: self.config.sample_size],
            replacement_weight=self.config.replacement_weight,
            run_weight=self.config.run_weight,
            missing_punctuation_weight=self.config.missing_punctuation_weight,
        )

    def resolve(self, raw: bytes, declared: Optional[str] = None, *, whole_page: bool = False) -> ResolvedDocument:
        """
        Decode ``raw`` under every candidate and keep the lowest garbage score.

        Ties keep the earlier candidate. With ``whole_page`` the visible page
        text is scored instead of a content block, for index pages that have
        no single narrative region. When no candidate yields anything to
        score, the first candidate is returned with ``parse_failed`` set.
        """
        candidates = self.candidates_for(declared)
        best: Optional[ResolvedDocument] = None

        for encoding in candidates:
            text = raw.decode(encoding, errors="replace")
            tree = parse_document(text)
            if whole_page:
                sample = page_text(tree)
            else:
                node = self.locator.locate(tree)
                sample = block_text(node) if node is not None else ""
            if not sample:
                logger.debug("No content under encoding", encoding=encoding)
                continue
            score = self.score(sample)
            logger.debug("Scored encoding", encoding=encoding, score=score)
            if best is None or score < best.score:
                best = ResolvedDocument(text=text, encoding=encoding, score=score, block_text=sample)
            if score == 0 and best.encoding == encoding:
                # Nothing can beat a clean decoding and later ties lose anyway.
                break

        if best is None:
            fallback = candidates[0]
            logger.warning("No candidate encoding produced content", fallback=fallback)
            return ResolvedDocument(
                text=raw.decode(fallback, errors="replace"),
                encoding=fallback,
                score=-1,
                block_text="",
                parse_failed=True,
            )
        return best
