"""
Per-host network performance statistics.

The monitor is a plain object handed to the fetcher; nothing here is global, so
tests and separate services each get their own counters.
"""

from __future__ import annotations

import threading
from dataclasses import asdict, dataclass, replace
from typing import Any, Dict, Optional
from urllib.parse import urlparse

import structlog

logger = structlog.get_logger(__name__)


@dataclass
class DomainStats:
    """Counters for a single host."""

    requests: int = 0
    successes: int = 0
    failures: int = 0
    timeouts: int = 0
    latency_sum_ms: float = 0.0
    min_latency_ms: Optional[float] = None
    max_latency_ms: float = 0.0
    bytes_received: int = 0

    @property
    def success_rate(self) -> float:
        return self.successes / self.requests * 100 if self.requests else 0.0

    @property
    def average_latency_ms(self) -> float:
        return self.latency_sum_ms / self.requests if self.requests else 0.0

    def observe(self, elapsed_ms: float, success: bool, size: int, timeout: bool) -> None:
        self.requests += 1
        self.latency_sum_ms += elapsed_ms
        if self.min_latency_ms is None or elapsed_ms < self.min_latency_ms:
            self.min_latency_ms = elapsed_ms
        if elapsed_ms > self.max_latency_ms:
            self.max_latency_ms = elapsed_ms
        if success:
            self.successes += 1
            self.bytes_received += size
        elif timeout:
            self.timeouts += 1
        else:
            self.failures += 1


def host_of(url: str) -> str:
    """Return the lower-cased host of ``url`` or ``"unknown"``."""
    try:
        return (urlparse(url).hostname or "unknown").lower()
    except ValueError:
        return "unknown"


class PerformanceMonitor:
    """Thread-safe aggregation of request latency and outcome counters."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._totals = DomainStats()
        self._error_types: Dict[str, int] = {}
        self._domains: Dict[str, DomainStats] = {}

    def record_request(
        self,
        url: str,
        elapsed_ms: float,
        success: bool,
        size: int = 0,
        error: Optional[str] = None,
        timeout: bool = False,
    ) -> None:
        """
        Record one finished request.

        A failed request counts as a timeout when ``timeout`` is set and as a
        failure otherwise; ``error`` names the failure class for the
        per-type breakdown.
        """
        host = host_of(url)
        with self._lock:
            self._totals.observe(elapsed_ms, success, size, timeout)
            stats = self._domains.get(host)
            if stats is None:
                stats = self._domains[host] = DomainStats()
            stats.observe(elapsed_ms, success, size, timeout)
            if not success:
                kind = "timeout" if timeout else (error or "unknown")
                self._error_types[kind] = self._error_types.get(kind, 0) + 1

    def domain_stats(self, host: str) -> Optional[DomainStats]:
        """Return a copy of the counters for ``host``."""
        with self._lock:
            stats = self._domains.get(host.lower())
            return replace(stats) if stats else None

    def snapshot(self) -> Dict[str, Any]:
        """Return all counters as plain data."""
        with self._lock:
            totals = self._totals
            return {
                "requests": totals.requests,
                "successes": totals.successes,
                "failures": totals.failures,
                "timeouts": totals.timeouts,
                "average_latency_ms": totals.average_latency_ms,
                "min_latency_ms": totals.min_latency_ms or 0.0,
                "max_latency_ms": totals.max_latency_ms,
                "bytes_received": totals.bytes_received,
                "error_types": dict(self._error_types),
                "domains": {
                    host: {
                        **asdict(stats),
                        "success_rate": stats.success_rate,
                        "average_latency_ms": stats.average_latency_ms,
                    }
                    for host, stats in self._domains.items()
                },
            }

    def summary(self) -> str:
        """One-line summary suitable for periodic logging."""
        snap = self.snapshot()
        if not snap["requests"]:
            return "no requests"
        rate = snap["successes"] / snap["requests"] * 100
        return f"requests: {snap['requests']}, success: {rate:.1f}%, avg: {snap['average_latency_ms']:.1f}ms"

    def report(self) -> str:
        """Multi-line human readable report."""
        snap = self.snapshot()
        total = snap["requests"]
        if not total:
            return "No network requests recorded"

        lines = [
            "=== Network performance ===",
            f"Requests: {total}",
            f"Success rate: {snap['successes'] / total * 100:.1f}% ({snap['successes']}/{total})",
            f"Failures: {snap['failures']}",
            f"Timeouts: {snap['timeouts']}",
            f"Average latency: {snap['average_latency_ms']:.1f}ms",
            f"Min latency: {snap['min_latency_ms']:.0f}ms",
            f"Max latency: {snap['max_latency_ms']:.0f}ms",
            f"Average size: {snap['bytes_received'] / total:.1f} bytes",
        ]
        if snap["error_types"]:
            lines.append("")
            lines.append("Errors by type:")
            lines.extend(f"  {kind}: {count}" for kind, count in sorted(snap["error_types"].items()))
        if snap["domains"]:
            lines.append("")
            lines.append("Per host:")
            for host, stats in sorted(snap["domains"].items()):
                lines.append(
                    f"  {host}: success {stats['success_rate']:.1f}%, avg {stats['average_latency_ms']:.1f}ms"
                )
        return "\n".join(lines)

    def reset(self) -> None:
        """Drop every counter."""
        with self._lock:
            self._totals = DomainStats()
            self._error_types.clear()
            self._domains.clear()
        logger.info("Performance statistics reset")
