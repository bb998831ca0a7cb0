"""
Retry classification and exponential backoff with jitter.
"""

from __future__ import annotations

import asyncio
import random
import socket
from dataclasses import dataclass, field
from typing import FrozenSet, Optional

import aiohttp

from shelfreader.config.config import FetcherConfig
from shelfreader.exceptions import NetworkErrorKind

RETRYABLE_STATUSES: FrozenSet[int] = frozenset({408, 429, 500, 502, 503, 504})

TRANSIENT_MESSAGES = (
    "connection reset",
    "broken pipe",
    "network is unreachable",
    "no route to host",
    "connection refused",
    "temporarily unavailable",
)


def classify_error(exc: BaseException) -> NetworkErrorKind:
    """Map a low-level exception onto a NetworkErrorKind."""
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError, aiohttp.ServerTimeoutError)):
        return NetworkErrorKind.TIMEOUT
    if isinstance(exc, (aiohttp.InvalidURL, ValueError)):
        return NetworkErrorKind.INVALID_URL
    if isinstance(exc, (aiohttp.ClientConnectorDNSError, socket.gaierror)):
        return NetworkErrorKind.DNS
    if isinstance(exc, aiohttp.ClientSSLError):
        return NetworkErrorKind.OTHER
    if isinstance(exc, aiohttp.ClientResponseError):
        return NetworkErrorKind.HTTP_STATUS
    if isinstance(
        exc,
        (aiohttp.ClientConnectorError, aiohttp.ServerDisconnectedError, aiohttp.ClientOSError, ConnectionError),
    ):
        return NetworkErrorKind.CONNECTION
    return NetworkErrorKind.OTHER


def is_retryable_status(status: int) -> bool:
    return status in RETRYABLE_STATUSES


def is_retryable(exc: BaseException) -> bool:
    """
    Decide whether a failed attempt is worth repeating.

    Timeouts, refused or reset connections, DNS failures and a handful of
    known-transient I/O messages are retryable. Everything else is fatal.
    """
    if isinstance(exc, aiohttp.ClientResponseError):
        return is_retryable_status(exc.status)
    kind = classify_error(exc)
    if kind in (NetworkErrorKind.TIMEOUT, NetworkErrorKind.CONNECTION, NetworkErrorKind.DNS):
        return True
    if kind is NetworkErrorKind.OTHER and not isinstance(exc, aiohttp.ClientSSLError):
        message = str(exc).lower()
        return any(fragment in message for fragment in TRANSIENT_MESSAGES)
    return False


@dataclass
class RetryPolicy:
    """Exponential backoff schedule with symmetric multiplicative jitter."""

    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 10.0
    multiplier: float = 2.0
    jitter_min: float = 0.1
    jitter_max: float = 0.3
    rng: random.Random = field(default_factory=random.Random, repr=False)

    @classmethod
    def from_config(cls, config: FetcherConfig, rng: Optional[random.Random] = None) -> RetryPolicy:
        return cls(
            max_retries=config.max_retries,
            base_delay=config.retry_base_delay_ms / 1000.0,
            max_delay=config.max_delay_ms / 1000.0,
            multiplier=config.backoff_multiplier,
            jitter_min=config.jitter_min,
            jitter_max=config.jitter_max,
            rng=rng or random.Random(),
        )

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def nominal_delay(self, attempt: int) -> float:
        """Delay after failed ``attempt`` (1-based) before jitter."""
        return self.base_delay * self.multiplier ** (max(attempt, 1) - 1)

    def delay(self, attempt: int) -> float:
        """
        Jittered delay after failed ``attempt``, never above ``max_delay``.

        The jitter scales the nominal delay up or down by 10-30% with equal
        probability, so the expected delay equals the nominal one and grows
        with the attempt number until it reaches the cap.
        """
        jitter = self.rng.uniform(self.jitter_min, self.jitter_max)
        sign = 1.0 if self.rng.random() < 0.5 else -1.0
        return max(0.0, min(self.nominal_delay(attempt) * (1.0 + sign * jitter), self.max_delay))

    def should_retry(self, attempt: int, exc: BaseException) -> bool:
        return attempt < self.max_attempts and is_retryable(exc)
