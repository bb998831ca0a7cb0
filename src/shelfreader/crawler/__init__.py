"""
Network access for ShelfReader: a retrying fetcher with browser-like headers.
"""

from .fetcher import FetchResult, RetryingFetcher
from .retry import RetryPolicy, classify_error, is_retryable
from .user_agents import UserAgentRotator, browser_headers

__all__ = [
    "FetchResult",
    "RetryingFetcher",
    "RetryPolicy",
    "UserAgentRotator",
    "browser_headers",
    "classify_error",
    "is_retryable",
]
