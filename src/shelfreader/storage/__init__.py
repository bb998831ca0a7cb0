"""
Local persistence: the chapter text cache and the bookshelf records.
"""

from .book_store import BookRecord, BookStore, ChapterRecord
from .chapter_cache import ChapterCacheStore, CleanupReport

__all__ = ["BookRecord", "BookStore", "ChapterCacheStore", "ChapterRecord", "CleanupReport"]
