"""
Prometheus metrics collection.

In-memory counters for capture and persistence activity. Each collector
can own its registry so several stores can live in one process.
"""

from typing import Optional

import structlog
from prometheus_client import REGISTRY, CollectorRegistry, Counter, Gauge, Histogram

logger = structlog.get_logger(__name__)


class MetricsCollector:
    """
    Capture and persistence metrics for one log store.

    Counters and gauges live in process memory; scraping happens via /metrics.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None) -> None:
        self.registry = registry if registry is not None else REGISTRY

        # Capture metrics
        self.logs_captured_total = Counter(
            "sniffer_logs_captured_total",
            "Total captured request/response pairs stored",
            ["method"],
            registry=self.registry,
        )

        self.logs_rejected_total = Counter(
            "sniffer_logs_rejected_total",
            "Total capture records rejected as invalid",
            registry=self.registry,
        )

        self.logs_evicted_total = Counter(
            "sniffer_logs_evicted_total",
            "Total entries evicted from the ring buffer",
            registry=self.registry,
        )

        self.buffer_entries = Gauge(
            "sniffer_buffer_entries",
            "Current number of buffered entries",
            registry=self.registry,
        )

        self.response_time = Histogram(
            "sniffer_captured_response_time_seconds",
            "Response time of captured requests in seconds",
            buckets=[0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
            registry=self.registry,
        )

        # Persistence metrics
        self.flushes_total = Counter(
            "sniffer_flushes_total",
            "Total successful buffer flushes to disk",
            ["trigger"],
            registry=self.registry,
        )

        self.flush_errors_total = Counter(
            "sniffer_flush_errors_total",
            "Total failed buffer flushes",
            registry=self.registry,
        )

        self.flush_duration = Histogram(
            "sniffer_flush_duration_seconds",
            "Flush duration in seconds",
            buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0],
            registry=self.registry,
        )

        self.pending_entries = Gauge(
            "sniffer_pending_entries",
            "Entries captured but not yet persisted",
            registry=self.registry,
        )

    def record_capture(self, method: str, response_time_ms: float, buffer_size: int, evicted: int = 0) -> None:
        """Record one stored entry."""
        self.logs_captured_total.labels(method=method).inc()
        self.response_time.observe(response_time_ms / 1000.0)
        self.buffer_entries.set(buffer_size)
        if evicted:
            self.logs_evicted_total.inc(evicted)

    def record_rejected(self) -> None:
        """Record an invalid capture record."""
        self.logs_rejected_total.inc()

    def record_buffer_size(self, buffer_size: int) -> None:
        """Update the buffer gauge after clear or reload."""
        self.buffer_entries.set(buffer_size)

    def record_flush(self, trigger: str, duration_seconds: float) -> None:
        """Record a successful flush."""
        self.flushes_total.labels(trigger=trigger).inc()
        self.flush_duration.observe(duration_seconds)

    def record_flush_error(self) -> None:
        """Record a failed flush."""
        self.flush_errors_total.inc()

    def update_pending(self, pending: int) -> None:
        """Update the unflushed entry gauge."""
        self.pending_entries.set(pending)
