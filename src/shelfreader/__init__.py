"""
ShelfReader: reading-material extraction from structurally unknown web pages.

The public entry points are the book parser, the chapter service and the
dependency container that wires them up.
"""

__version__ = "0.1.0"

from shelfreader.exceptions import (
    BookStoreError,
    CacheError,
    NetworkError,
    NetworkErrorKind,
    ParseError,
    ShelfReaderError,
)
from shelfreader.models import BookSummary, ChapterRef

__all__ = [
    "__version__",
    "BookStoreError",
    "BookSummary",
    "CacheError",
    "ChapterRef",
    "NetworkError",
    "NetworkErrorKind",
    "ParseError",
    "ShelfReaderError",
]
