"""
Persistent bookshelf: one JSON document of explicit book records.

Parsed HTML never reaches this module; records hold plain strings and
integers only.
"""

from __future__ import annotations

import json
import shutil
import threading
from pathlib import Path
from typing import Dict, List, Optional

import structlog
from pydantic import BaseModel, Field, ValidationError

from shelfreader.config.config import StorageConfig
from shelfreader.exceptions import BookStoreError
from shelfreader.models import ChapterRef
from shelfreader.utils.atomic import atomic_write_json
from shelfreader.utils.filenames import short_hash

logger = structlog.get_logger(__name__)

BOOKS_FILE = "books.json"
CORRUPT_SUFFIX = ".corrupt"


class ChapterRecord(BaseModel):
    """A chapter list entry as stored on disk."""

    title: str
    url: str

    @classmethod
    def from_ref(cls, ref: ChapterRef) -> ChapterRecord:
        return cls(title=ref.title, url=ref.url)

    def to_ref(self) -> ChapterRef:
        return ChapterRef(title=self.title, url=self.url)


class BookRecord(BaseModel):
    """A book on the shelf with its reading position."""

    id: str
    title: str
    author: str
    url: str
    last_read_position: int = Field(default=0, ge=0, description="Index of the last chapter read.")
    last_read_chapter_id: Optional[str] = None
    chapter_list: List[ChapterRecord] = Field(default_factory=list)

    @staticmethod
    def id_for_url(url: str) -> str:
        """Stable book id derived from the index page URL."""
        return short_hash(url, 16)

    def chapters(self) -> List[ChapterRef]:
        return [record.to_ref() for record in self.chapter_list]


class BookStore:
    """Loads and saves book records under ``<storage path>/books.json``."""

    def __init__(self, config: Optional[StorageConfig] = None) -> None:
        self.config = config or StorageConfig()
        self.path = Path(self.config.path) / BOOKS_FILE
        self._lock = threading.Lock()
        self._books: Optional[Dict[str, BookRecord]] = None
        self.logger = logger.bind(component="BookStore")

    def _load(self) -> Dict[str, BookRecord]:
        if self._books is not None:
            return self._books
        books: Dict[str, BookRecord] = {}
        if not self.path.exists():
            self._books = books
            return books
        try:
            text = self.path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise BookStoreError(str(self.path), f"cannot read book store: {e}") from e

        try:
            raw = json.loads(text)
        except json.JSONDecodeError as e:
            self.logger.error("Book store is not valid JSON", path=str(self.path), error=str(e))
            raw = None
        items = raw if isinstance(raw, list) else []
        skipped = 0 if isinstance(raw, list) else 1
        for item in items:
            try:
                record = BookRecord.model_validate(item)
            except ValidationError as e:
                self.logger.warning("Skipping invalid book record", error=str(e))
                skipped += 1
                continue
            books[record.id] = record
        if skipped:
            # The next save rewrites the shelf without what could not be parsed.
            self._back_up()
        self._books = books
        return books

    def _back_up(self) -> None:
        backup = self.path.with_name(self.path.name + CORRUPT_SUFFIX)
        try:
            shutil.copy2(self.path, backup)
        except OSError as e:
            raise BookStoreError(str(self.path), f"cannot back up unreadable book store: {e}") from e
        self.logger.warning("Backed up unreadable book store", backup=str(backup))

    def _write(self, books: Dict[str, BookRecord]) -> None:
        """Persist ``books``, then make them the in-memory shelf."""
        try:
            atomic_write_json(self.path, [record.model_dump(mode="json") for record in books.values()])
        except (OSError, ValueError) as e:
            raise BookStoreError(str(self.path), f"cannot write book store: {e}") from e
        self._books = books

    def list_books(self) -> List[BookRecord]:
        with self._lock:
            return [record.model_copy(deep=True) for record in self._load().values()]

    def get(self, book_id: str) -> Optional[BookRecord]:
        with self._lock:
            record = self._load().get(book_id)
            return record.model_copy(deep=True) if record else None

    def save(self, record: BookRecord) -> None:
        """Insert or replace ``record`` and persist the shelf."""
        with self._lock:
            books = dict(self._load())
            books[record.id] = record.model_copy(deep=True)
            self._write(books)
        self.logger.debug("Book saved", book_id=record.id, chapters=len(record.chapter_list))

    def delete(self, book_id: str) -> bool:
        with self._lock:
            books = dict(self._load())
            if books.pop(book_id, None) is None:
                return False
            self._write(books)
        return True

    def update_progress(self, book_id: str, position: int, chapter_id: Optional[str] = None) -> Optional[BookRecord]:
        """Record the reading position of a book; returns the updated record."""
        with self._lock:
            books = dict(self._load())
            record = books.get(book_id)
            if record is None:
                return None
            record = record.model_copy(update={"last_read_position": position, "last_read_chapter_id": chapter_id})
            books[book_id] = record
            self._write(books)
            return record.model_copy(deep=True)
