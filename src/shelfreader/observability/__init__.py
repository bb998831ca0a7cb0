"""Logging, Prometheus metrics and network performance statistics."""

from .logging import configure_logging
from .metrics import METRICS, start_metrics_server, update_process_metrics
from .performance import DomainStats, PerformanceMonitor

__all__ = [
    "METRICS",
    "DomainStats",
    "PerformanceMonitor",
    "configure_logging",
    "start_metrics_server",
    "update_process_metrics",
]
