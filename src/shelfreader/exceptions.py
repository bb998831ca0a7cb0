"""
Typed errors raised by ShelfReader's I/O components.

Pure extraction components never raise for "no match"; they return ``None`` or
an empty result. Only the fetcher, the parser and the cache store raise, and
only for conditions a caller can act on.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional


class ShelfReaderError(Exception):
    """Base class for all ShelfReader errors."""


class NetworkErrorKind(str, Enum):
    """Failure classes reported by the retrying fetcher."""

    TIMEOUT = "timeout"
    CONNECTION = "connection"
    DNS = "dns"
    HTTP_STATUS = "http_status"
    INVALID_URL = "invalid_url"
    OTHER = "other"


class NetworkError(ShelfReaderError):
    """A fetch failed after retries were exhausted, or failed fatally."""

    def __init__(
        self,
        kind: NetworkErrorKind,
        url: str,
        message: str,
        *,
        attempts: int = 1,
        status: Optional[int] = None,
        retryable: bool = False,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.url = url
        self.attempts = attempts
        self.status = status
        self.retryable = retryable

    def __str__(self) -> str:
        base = super().__str__()
        if self.status is not None:
            return f"{base} (url={self.url}, status={self.status}, attempts={self.attempts})"
        return f"{base} (url={self.url}, attempts={self.attempts})"


class ParseError(ShelfReaderError):
    """No content block could be extracted under any candidate encoding."""

    def __init__(self, url: str, message: str = "no content block found", *, encoding: Optional[str] = None) -> None:
        super().__init__(message)
        self.url = url
        self.encoding = encoding

    def __str__(self) -> str:
        return f"{super().__str__()} (url={self.url}, encoding={self.encoding})"


class CacheError(ShelfReaderError):
    """The cache directory could not be read, written or cleared."""

    def __init__(self, path: str, message: str) -> None:
        super().__init__(message)
        self.path = path


class BookStoreError(ShelfReaderError):
    """The bookshelf file could not be read or written."""

    def __init__(self, path: str, message: str) -> None:
        super().__init__(message)
        self.path = path

    def __str__(self) -> str:
        return f"{super().__str__()} (path={self.path})"
