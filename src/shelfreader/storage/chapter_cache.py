"""
On-disk chapter cache with age-based expiry and free-space eviction.

Layout: ``<root>/<safe book id>/<safe chapter id>.txt``. The file mtime is the
entry's last-modified time. Every write is an atomic whole-file replace, so
concurrent writers of the same entry resolve to last-writer-wins.

I/O problems never propagate out of lookups or writes: the store logs them
and behaves as if the cache were empty, so reading continues from the
network. Only the explicit ``clear`` operations raise ``CacheError``.
"""

from __future__ import annotations

import shutil
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

import psutil
import structlog

from shelfreader.config.config import CacheConfig
from shelfreader.exceptions import CacheError
from shelfreader.observability.metrics import METRICS
from shelfreader.utils.atomic import atomic_write_text, is_temp_file, remove_stale_temp_files
from shelfreader.utils.filenames import safe_filename

logger = structlog.get_logger(__name__)

ENTRY_SUFFIX = ".txt"
SECONDS_PER_DAY = 86400
MB = 1024 * 1024


@dataclass
class CleanupReport:
    """What a cleanup pass removed."""

    expired_removed: int = 0
    evicted: int = 0
    freed_bytes: int = 0


class ChapterCacheStore:
    """
    File cache of normalized chapter text.

    Args:
        config: Cache section of the configuration
        clock: Source of "now" in epoch seconds, replaceable in tests
    """

    def __init__(self, config: Optional[CacheConfig] = None, clock: Callable[[], float] = time.time) -> None:
        self.config = config or CacheConfig()
        self.root = Path(self.config.path)
        self.clock = clock
        self.logger = logger.bind(component="ChapterCacheStore")

    @property
    def enabled(self) -> bool:
        return self.config.cache_enabled

    @property
    def max_age_seconds(self) -> Optional[float]:
        """Entry lifetime, or ``None`` when entries never expire."""
        days = self.config.max_cache_age_days
        return days * SECONDS_PER_DAY if days > 0 else None

    def book_dir(self, book_id: str) -> Path:
        return self.root / safe_filename(book_id)

    def entry_path(self, book_id: str, chapter_id: str) -> Path:
        return self.book_dir(book_id) / f"{safe_filename(chapter_id)}{ENTRY_SUFFIX}"

    def free_space_bytes(self) -> int:
        """Free bytes on the filesystem holding the cache root."""
        probe = self.root
        while not probe.exists() and probe != probe.parent:
            probe = probe.parent
        return psutil.disk_usage(str(probe)).free

    def _has_free_space(self, unknown: bool = False) -> bool:
        """Whether free space is at or above the floor; ``unknown`` when it cannot be measured."""
        try:
            return self.free_space_bytes() >= self.config.min_free_space_mb * MB
        except OSError as e:
            self.logger.warning("Cannot determine free disk space", path=str(self.root), error=str(e))
            return unknown

    def _is_expired(self, mtime: float) -> bool:
        max_age = self.max_age_seconds
        return max_age is not None and self.clock() - mtime > max_age

    def _read(self, path: Path) -> Optional[str]:
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as e:
            self.logger.warning("Failed to read cache entry", path=str(path), error=str(e))
            return None

    def get(self, book_id: str, chapter_id: str) -> Optional[str]:
        """Return cached content younger than the configured maximum age."""
        if not self.enabled:
            return None
        path = self.entry_path(book_id, chapter_id)
        try:
            mtime = path.stat().st_mtime
        except OSError:
            METRICS["cache_lookups_total"].labels(result="miss").inc()
            return None
        if self._is_expired(mtime):
            METRICS["cache_lookups_total"].labels(result="expired").inc()
            self.logger.debug("Cache entry expired", book_id=book_id, chapter_id=chapter_id)
            return None
        content = self._read(path)
        METRICS["cache_lookups_total"].labels(result="hit" if content is not None else "miss").inc()
        return content

    def get_fallback(self, book_id: str, chapter_id: str) -> Optional[str]:
        """Return cached content regardless of age."""
        if not self.enabled:
            return None
        content = self._read(self.entry_path(book_id, chapter_id))
        METRICS["cache_lookups_total"].labels(result="stale_hit" if content is not None else "miss").inc()
        return content

    def put(self, book_id: str, chapter_id: str, content: str) -> bool:
        """
        Store ``content`` for a chapter.

        Returns:
            True if the entry was written, False if the write was skipped or failed
        """
        if not self.enabled:
            return False
        if not content or not content.strip():
            METRICS["cache_writes_total"].labels(result="skipped_empty").inc()
            return False
        if not self._has_free_space():
            METRICS["cache_writes_total"].labels(result="skipped_disk").inc()
            self.logger.warning(
                "Skipping cache write, low disk space",
                book_id=book_id,
                chapter_id=chapter_id,
                min_free_space_mb=self.config.min_free_space_mb,
            )
            return False

        path = self.entry_path(book_id, chapter_id)
        try:
            atomic_write_text(path, content)
        except OSError as e:
            METRICS["cache_writes_total"].labels(result="error").inc()
            self.logger.warning("Cache write failed", path=str(path), error=str(e))
            return False
        METRICS["cache_writes_total"].labels(result="written").inc()
        return True

    def _entries(self, directory: Optional[Path] = None) -> List[Tuple[Path, float, int]]:
        """All cache files as ``(path, mtime, size)``; unreadable ones are skipped."""
        directory = directory or self.root
        entries: List[Tuple[Path, float, int]] = []
        if not directory.exists():
            return entries
        try:
            paths = list(directory.rglob(f"*{ENTRY_SUFFIX}"))
        except OSError as e:
            self.logger.warning("Cannot scan cache directory", path=str(directory), error=str(e))
            return entries
        for path in paths:
            if is_temp_file(path):
                continue
            try:
                stat = path.stat()
            except OSError:
                continue
            entries.append((path, stat.st_mtime, stat.st_size))
        return entries

    def _remove(self, path: Path) -> bool:
        try:
            path.unlink()
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            self.logger.warning("Failed to remove cache entry", path=str(path), error=str(e))
            return False

    def _remove_expired(self, directory: Path, report: CleanupReport) -> List[Tuple[Path, float, int]]:
        remaining = []
        for path, mtime, size in self._entries(directory):
            if self._is_expired(mtime):
                if self._remove(path):
                    report.expired_removed += 1
                    report.freed_bytes += size
                    METRICS["cache_evictions_total"].labels(reason="expired").inc()
                continue
            remaining.append((path, mtime, size))
        return remaining

    def cleanup(self) -> CleanupReport:
        """
        Remove expired entries, then evict oldest entries while the disk is
        below the free-space floor or the cache exceeds its size limit.
        """
        report = CleanupReport()
        if not self.root.exists():
            return report

        remaining = self._remove_expired(self.root, report)
        remaining.sort(key=lambda entry: entry[1])
        total_size = sum(size for _, _, size in remaining)
        max_size = self.config.max_cache_size_mb * MB

        while remaining:
            over_size = total_size > max_size
            if not over_size and self._has_free_space(unknown=True):
                break
            path, _, size = remaining.pop(0)
            if self._remove(path):
                report.evicted += 1
                report.freed_bytes += size
                METRICS["cache_evictions_total"].labels(reason="size" if over_size else "disk").inc()
            total_size -= size

        self._prune_empty_dirs()
        remove_stale_temp_files_in_tree(self.root)
        self.logger.info(
            "Cache cleanup finished",
            expired_removed=report.expired_removed,
            evicted=report.evicted,
            freed_bytes=report.freed_bytes,
        )
        return report

    def cleanup_book(self, book_id: str) -> CleanupReport:
        """Remove expired entries of one book."""
        report = CleanupReport()
        directory = self.book_dir(book_id)
        if directory.exists():
            self._remove_expired(directory, report)
            self.logger.debug("Book cache cleaned", book_id=book_id, expired_removed=report.expired_removed)
        return report

    def _prune_empty_dirs(self) -> None:
        try:
            book_dirs = [path for path in self.root.iterdir() if path.is_dir()]
        except OSError:
            return
        for directory in book_dirs:
            try:
                if not any(directory.iterdir()):
                    directory.rmdir()
            except OSError:
                continue

    def clear(self, book_id: str) -> None:
        """Remove every entry of one book."""
        directory = self.book_dir(book_id)
        try:
            if directory.exists():
                shutil.rmtree(directory)
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise CacheError(str(directory), f"failed to clear book cache: {e}") from e
        self.logger.info("Book cache cleared", book_id=book_id)

    def clear_all(self) -> None:
        """Remove the whole cache tree."""
        try:
            if self.root.exists():
                shutil.rmtree(self.root)
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise CacheError(str(self.root), f"failed to clear cache: {e}") from e
        self.logger.info("Cache cleared", path=str(self.root))

    def stats(self) -> Dict[str, Any]:
        entries = self._entries()
        books = {path.parent for path, _, _ in entries}
        return {
            "books": len(books),
            "entries": len(entries),
            "size_bytes": sum(size for _, _, size in entries),
            "path": str(self.root),
        }


def remove_stale_temp_files_in_tree(root: Path) -> int:
    """Sweep leftovers of interrupted writes from every book directory."""
    removed = 0
    try:
        directories = [path for path in root.iterdir() if path.is_dir()]
    except OSError:
        return 0
    for directory in directories:
        removed += remove_stale_temp_files(directory)
    return removed
