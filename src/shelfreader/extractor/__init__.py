"""
Heuristic extraction: encoding resolution, content block location, chapter
link classification, text normalization and book metadata.

Everything here is synchronous and free of I/O so it can run on a worker
thread; parsed trees never leave this package.
"""

from .blocks import block_text, page_text, parse_document
from .chapter_titles import is_chapter_title
from .classifier import is_chapter_link, is_toc_link
from .encoding import EncodingResolver, ResolvedDocument, garbage_score
from .locator import ContentBlockLocator, DensityStrategy, SignatureStrategy
from .metadata import UNKNOWN_AUTHOR, UNKNOWN_TITLE, extract_author, extract_title
from .normalizer import TextNormalizer, normalize
from .protocols import BlockStrategy

__all__ = [
    "BlockStrategy",
    "ContentBlockLocator",
    "DensityStrategy",
    "EncodingResolver",
    "ResolvedDocument",
    "SignatureStrategy",
    "TextNormalizer",
    "UNKNOWN_AUTHOR",
    "UNKNOWN_TITLE",
    "block_text",
    "extract_author",
    "extract_title",
    "garbage_score",
    "is_chapter_link",
    "is_chapter_title",
    "is_toc_link",
    "normalize",
    "page_text",
    "parse_document",
]
