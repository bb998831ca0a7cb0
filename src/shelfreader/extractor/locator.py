"""
Content block location: known structural signatures first, then text density.
"""

from __future__ import annotations

import re
import threading
import time
from typing import Dict, List, Optional, Sequence

import structlog
from selectolax.lexbor import LexborHTMLParser, LexborNode

from shelfreader.config.config import ExtractionSettings
from shelfreader.observability.metrics import METRICS

from .blocks import FORMATTING_TAGS, link_text_length, node_text_length
from .protocols import BlockStrategy

logger = structlog.get_logger(__name__)

SITE_SIGNATURES: List[str] = [
    "div#content1",
    "div.content_read",
    "div.box_con #content",
]

COMMON_SIGNATURES: List[str] = [
    "div.content",
    "div.article",
    "article",
    "div.post-content",
    "div.entry-content",
    "div.main-content",
    "div.article-content",
    "div#content",
    "div#article",
    "div.chapter-content",
    "div.read-content",
    "div.chapter",
    "div.txt",
    "div.text",
    "div#BookText",
    "div#booktext",
    "div#htmlContent",
    "div#chaptercontent",
    "div.showtxt",
    "div#content_1",
    "div.box_con",
    "div.contentbox",
]

CANDIDATE_TAGS = "div, article, section, main, td, p"

NOISE_KEYWORDS = frozenset(
    {
        "copyright", "footer", "header", "comment", "comments", "menu", "nav", "navbar", "sidebar", "ad",
        "ads", "advert", "adsbygoogle", "author", "meta", "recommend", "related", "share", "tag", "tags",
        "tool", "toolbar", "breadcrumb",
    }
)

_TOKEN_SPLIT = re.compile(r"[\s_\-]+")


def has_noise_marker(node: LexborNode) -> bool:
    """True when the node's id or class names a navigation or boilerplate region."""
    attributes = node.attributes
    marker = f"{attributes.get('id') or ''} {attributes.get('class') or ''}".lower()
    return any(token in NOISE_KEYWORDS for token in _TOKEN_SPLIT.split(marker) if token)


class SignatureStrategy:
    """Direct CSS lookups for layouts shared by many reading sites."""

    name = "signature"

    def __init__(self, selectors: Optional[Sequence[str]] = None, min_text_length: int = 50) -> None:
        self.selectors = list(selectors) if selectors is not None else SITE_SIGNATURES + COMMON_SIGNATURES
        self.min_text_length = min_text_length

    def locate(self, tree: LexborHTMLParser) -> Optional[LexborNode]:
        for selector in self.selectors:
            for node in tree.css(selector):
                if node_text_length(node) >= self.min_text_length:
                    logger.debug("Signature matched", selector=selector)
                    return node
        return None


class DensityStrategy:
    """
    Scores block-level nodes by visible text per unit of markup.

    score = text length / (1 + structural descendant tags), where purely
    presentational tags (p, br, span, ...) do not count as structure. Nodes
    dominated by link text, named like boilerplate, or too short are skipped.
    """

    name = "density"

    def __init__(self, min_text_length: int = 50, max_link_density: float = 0.5) -> None:
        self.min_text_length = min_text_length
        self.max_link_density = max_link_density

    def score(self, node: LexborNode) -> Optional[float]:
        """Density score of ``node``, or ``None`` if it is not a candidate."""
        text_length = node_text_length(node)
        if text_length < self.min_text_length:
            return None
        if has_noise_marker(node):
            return None
        if link_text_length(node) / text_length > self.max_link_density:
            return None
        # traverse() starts at the node itself, which is never a formatting tag
        markup = sum(
            1 for descendant in node.traverse() if descendant.is_element_node and descendant.tag not in FORMATTING_TAGS
        )
        return text_length / max(markup, 1)

    def locate(self, tree: LexborHTMLParser) -> Optional[LexborNode]:
        body = tree.body
        if body is None:
            return None
        best: Optional[LexborNode] = None
        best_score = 0.0
        for node in body.css(CANDIDATE_TAGS):
            score = self.score(node)
            if score is not None and score > best_score:
                best, best_score = node, score
        return best


class ContentBlockLocator:
    """
    Runs block strategies in priority order; the first non-empty result wins.

    "Not found" is a normal outcome reported as ``None`` so callers can try
    another encoding or report an extraction failure.
    """

    def __init__(
        self,
        settings: Optional[ExtractionSettings] = None,
        strategies: Optional[Sequence[BlockStrategy]] = None,
    ) -> None:
        self.settings = settings or ExtractionSettings()
        available: Dict[str, BlockStrategy] = {
            "signature": SignatureStrategy(min_text_length=self.settings.min_text_length),
            "density": DensityStrategy(
                min_text_length=self.settings.min_text_length,
                max_link_density=self.settings.max_link_density,
            ),
        }
        if strategies is not None:
            self.strategies: List[BlockStrategy] = list(strategies)
        else:
            for name in self.settings.strategy_order:
                if name not in available:
                    raise ValueError(
                        f"Invalid strategy '{name}' in strategy_order. Available strategies: {list(available)}"
                    )
            self.strategies = [available[name] for name in self.settings.strategy_order]

        self._lock = threading.Lock()
        self._strategy_metrics: Dict[str, Dict[str, float]] = {
            strategy.name: {"attempts": 0, "successes": 0, "total_time": 0.0} for strategy in self.strategies
        }

    def locate(self, tree: LexborHTMLParser) -> Optional[LexborNode]:
        for strategy in self.strategies:
            start = time.perf_counter()
            node = strategy.locate(tree)
            elapsed = time.perf_counter() - start
            found = node is not None
            with self._lock:
                stats = self._strategy_metrics[strategy.name]
                stats["attempts"] += 1
                stats["total_time"] += elapsed
                if found:
                    stats["successes"] += 1
            METRICS["extraction_strategy_total"].labels(
                strategy=strategy.name, outcome="found" if found else "empty"
            ).inc()
            if found:
                return node
        return None

    def get_metrics(self) -> Dict[str, Dict[str, float]]:
        """Per-strategy attempt, success and timing counters."""
        with self._lock:
            return {name: dict(stats) for name, stats in self._strategy_metrics.items()}
