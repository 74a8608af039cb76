"""
Observability module: Metrics and structured logging.
"""

from bincache.observability.metrics import (
    MetricsCollector,
    Counter,
    Gauge,
    Histogram,
    StoreStats,
)
from bincache.observability.logging import StructuredLogger, LogLevel, setup_logging

__all__ = [
    "MetricsCollector",
    "Counter",
    "Gauge",
    "Histogram",
    "StoreStats",
    "StructuredLogger",
    "LogLevel",
    "setup_logging",
]
