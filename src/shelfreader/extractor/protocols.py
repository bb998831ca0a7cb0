"""
Protocols for pluggable content block strategies.
"""

from __future__ import annotations

from typing import Optional, Protocol, runtime_checkable

from selectolax.lexbor import LexborHTMLParser, LexborNode


@runtime_checkable
class BlockStrategy(Protocol):
    """One way of finding the node that holds a page's reading content."""

    name: str

    def locate(self, tree: LexborHTMLParser) -> Optional[LexborNode]:
        """Return the content node, or ``None`` when this strategy finds nothing.

        Args:
            tree: Parsed document, already stripped of script and style tags

        Returns:
            The winning node or ``None``; never raises for "not found"
        """
        ...
