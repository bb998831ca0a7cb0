"""
Helpers for turning parsed HTML into visible text.

All functions here take selectolax lexbor nodes and never let a node escape
the extractor package; callers receive plain strings.
"""

from __future__ import annotations

from typing import List

from selectolax.lexbor import LexborHTMLParser, LexborNode

# Never part of reading content; removed right after parsing.
STRIPPED_TAGS = ["script", "style", "noscript", "iframe", "template"]

# Skipped while collecting block text.
SKIPPED_TAGS = frozenset({"a", "button", "form", "input", "select", "textarea", "svg", "head", "title"})
SKIPPED_CLASSES = ("adsbygoogle", "bottem", "bottem2")

BLOCK_TAGS = frozenset(
    {
        "address", "article", "aside", "blockquote", "dd", "div", "dl", "dt", "fieldset", "figcaption",
        "figure", "footer", "h1", "h2", "h3", "h4", "h5", "h6", "header", "hr", "li", "main", "nav",
        "ol", "p", "pre", "section", "table", "tbody", "td", "th", "thead", "tr", "ul",
    }
)

# Tags that only style text; they do not count as markup for density scoring.
FORMATTING_TAGS = frozenset({"p", "br", "span", "em", "strong", "b", "i", "u", "font", "small", "big", "sub", "sup"})


def parse_document(html: str) -> LexborHTMLParser:
    """Parse ``html`` and drop tags that never carry reading content."""
    tree = LexborHTMLParser(html)
    tree.strip_tags(STRIPPED_TAGS)
    return tree


def visible_length(text: str) -> int:
    """Number of non-whitespace characters in ``text``."""
    return sum(1 for ch in text if not ch.isspace())


def node_text_length(node: LexborNode) -> int:
    return visible_length(node.text(deep=True, separator=" "))


def link_text_length(node: LexborNode) -> int:
    return sum(node_text_length(link) for link in node.css("a"))


def _is_skipped(node: LexborNode) -> bool:
    if node.tag in SKIPPED_TAGS:
        return True
    classes = (node.attributes.get("class") or "").split()
    return any(name in SKIPPED_CLASSES for name in classes)


def _collect(node: LexborNode, parts: List[str]) -> None:
    for child in node.iter(include_text=True):
        if child.is_text_node:
            parts.append(child.text_content or "")
            continue
        if not child.is_element_node:
            continue
        tag = child.tag
        if tag == "br":
            parts.append("\n")
            continue
        if _is_skipped(child):
            continue
        block = tag in BLOCK_TAGS
        if block:
            parts.append("\n")
        _collect(child, parts)
        if block:
            parts.append("\n")


def block_text(node: LexborNode) -> str:
    """
    Visible text of ``node`` with one line per block.

    ``<br>`` and block-level elements become line breaks, links and ad
    containers are skipped, whitespace inside a line is collapsed and empty
    lines are dropped.
    """
    parts: List[str] = []
    _collect(node, parts)
    lines = (" ".join(line.split()) for line in "".join(parts).split("\n"))
    return "\n".join(line for line in lines if line)


def page_text(tree: LexborHTMLParser) -> str:
    """Visible text of the whole body, used when no content block exists."""
    body = tree.body
    if body is None:
        return ""
    return body.text(deep=True, separator="\n", strip=True)
