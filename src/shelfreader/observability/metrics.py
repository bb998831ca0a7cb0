"""
Defines and manages Prometheus metrics for ShelfReader.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict

import psutil
from prometheus_client import REGISTRY as _PROM_REGISTRY
from prometheus_client import Counter as _OrigCounter
from prometheus_client import Gauge as _OrigGauge
from prometheus_client import Histogram as _OrigHistogram
from prometheus_client import start_http_server

if TYPE_CHECKING:
    from shelfreader.config.config import MonitoringConfig

# ---------------------------------------------------------------------------
# Duplicate-safe Prometheus metric wrappers
# ---------------------------------------------------------------------------
# Defined before any metric creation so that importing this module more than
# once during the test suite never trips the registry's duplicate check.


def _duplicate_safe_factory(metric_cls):
    """Return a factory that reuses an existing collector if already present."""

    def _factory(name: str, documentation: str, *args, **kwargs):  # type: ignore[override]
        existing = _PROM_REGISTRY._names_to_collectors.get(name)
        if existing is not None:
            return existing  # type: ignore[return-value]

        try:
            return metric_cls(name, documentation, *args, **kwargs)  # type: ignore[call-arg]
        except ValueError:
            # Registration lost the race, fall back to the now-existing collector.
            return _PROM_REGISTRY._names_to_collectors[name]  # type: ignore[return-value]

    return _factory


Counter = _duplicate_safe_factory(_OrigCounter)  # type: ignore[assignment]
Gauge = _duplicate_safe_factory(_OrigGauge)  # type: ignore[assignment]
Histogram = _duplicate_safe_factory(_OrigHistogram)  # type: ignore[assignment]


def _create_metrics() -> Dict[str, Any]:
    """Create every ShelfReader collector, reusing registered ones."""
    return {
        # Fetcher
        "fetch_requests_total": Counter(
            "shelfreader_fetch_requests_total",
            "Fetch calls by final outcome",
            ["outcome"],
        ),
        "fetch_retries_total": Counter(
            "shelfreader_fetch_retries_total",
            "Retry attempts scheduled by the fetcher",
            ["reason"],
        ),
        "fetch_latency_seconds": Histogram(
            "shelfreader_fetch_latency_seconds",
            "Time taken to fetch a URL including retries",
            buckets=[0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 18.0, 30.0, 60.0],
        ),
        "fetch_in_flight": Gauge(
            "shelfreader_fetch_in_flight",
            "Number of HTTP requests currently in flight",
        ),
        # Cache
        "cache_lookups_total": Counter(
            "shelfreader_cache_lookups_total",
            "Chapter cache lookups by result",
            ["result"],
        ),
        "cache_writes_total": Counter(
            "shelfreader_cache_writes_total",
            "Chapter cache writes by result",
            ["result"],
        ),
        "cache_evictions_total": Counter(
            "shelfreader_cache_evictions_total",
            "Chapter cache files removed by cleanup",
            ["reason"],
        ),
        # Extraction
        "extraction_strategy_total": Counter(
            "shelfreader_extraction_strategy_total",
            "Content block strategy outcomes",
            ["strategy", "outcome"],
        ),
        "extraction_duration_seconds": Histogram(
            "shelfreader_extraction_duration_seconds",
            "Time spent decoding, locating and normalizing a page",
            buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0],
        ),
        "chapter_reads_total": Counter(
            "shelfreader_chapter_reads_total",
            "Chapter reads by the source that served them",
            ["source"],
        ),
        # Process
        "process_memory_bytes": Gauge(
            "shelfreader_process_memory_bytes",
            "Resident set size of the ShelfReader process",
        ),
    }


METRICS: Dict[str, Any] = _create_metrics()


def update_process_metrics() -> None:
    """Refresh process-level gauges from psutil."""
    try:
        METRICS["process_memory_bytes"].set(psutil.Process().memory_info().rss)
    except psutil.Error:
        pass


def start_metrics_server(config: MonitoringConfig) -> bool:
    """Start the Prometheus exporter when a port is configured."""
    if not config.enabled or not config.prometheus_port:
        return False
    start_http_server(config.prometheus_port)
    update_process_metrics()
    return True
