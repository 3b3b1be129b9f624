"""Prometheus metrics for binlog collection and recovery."""

from __future__ import annotations

from prometheus_client import (
    Counter,
    Gauge,
    Histogram,
    Info,
    start_http_server,
    REGISTRY,
    CollectorRegistry,
)


class MetricsRegistry:
    """Registry of all collector and recoverer metrics."""

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        """Initialize metrics registry."""
        self._registry = registry or REGISTRY

        # Collector metrics
        self.cycles_total = Counter(
            "pitr_collector_cycles_total",
            "Total number of collection cycles",
            ["status"],  # committed, aborted, failed
            registry=self._registry,
        )

        self.cycle_duration_seconds = Histogram(
            "pitr_collector_cycle_duration_seconds",
            "Duration of a collection cycle in seconds",
            buckets=(0.1, 0.5, 1.0, 5.0, 15.0, 30.0, 60.0, 120.0, 300.0),
            registry=self._registry,
        )

        self.events_captured_total = Counter(
            "pitr_collector_events_captured_total",
            "Total binlog events committed to storage",
            registry=self._registry,
        )

        self.segments_committed_total = Counter(
            "pitr_collector_segments_committed_total",
            "Total segments appended to the manifest",
            ["empty"],  # true, false
            registry=self._registry,
        )

        self.segment_bytes_total = Counter(
            "pitr_collector_segment_bytes_total",
            "Total segment payload bytes written",
            registry=self._registry,
        )

        self.append_retries_total = Counter(
            "pitr_collector_append_retries_total",
            "Total transient storage errors retried during commit",
            registry=self._registry,
        )

        self.resume_position = Gauge(
            "pitr_collector_resume_position",
            "Binlog position of the last committed segment end",
            registry=self._registry,
        )

        # Storage metrics
        self.storage_operations_total = Counter(
            "pitr_storage_operations_total",
            "Storage backend operations",
            ["operation", "status"],  # status: success or the error class name
            registry=self._registry,
        )

        self.storage_read_retries_total = Counter(
            "pitr_storage_read_retries_total",
            "Total transient storage errors retried while reading the manifest or segments",
            ["operation"],  # resume, manifest, segment
            registry=self._registry,
        )

        # Recovery metrics
        self.recovery_segments_applied_total = Counter(
            "pitr_recovery_segments_applied_total",
            "Total segments replayed during recovery",
            registry=self._registry,
        )

        self.recovery_transactions_applied_total = Counter(
            "pitr_recovery_transactions_applied_total",
            "Total transactions applied to the target database",
            registry=self._registry,
        )

        self.recovery_duration_seconds = Gauge(
            "pitr_recovery_duration_seconds",
            "Duration of last recovery in seconds",
            registry=self._registry,
        )

        self.info = Info(
            "binlog_pitr",
            "Binlog PITR information",
            registry=self._registry,
        )

    @property
    def registry(self) -> CollectorRegistry:
        return self._registry

    def sample(self, name: str, labels: dict[str, str] | None = None) -> float:
        """Current value of one sample, 0.0 if it was never recorded."""
        return self._registry.get_sample_value(name, labels or {}) or 0.0


# Global metrics registry
_metrics: MetricsRegistry | None = None


def setup_metrics(port: int = 8001, registry: CollectorRegistry | None = None) -> MetricsRegistry:
    """
    Set up Prometheus metrics server.

    Args:
        port: Port for the metrics HTTP server
        registry: Optional custom registry

    Returns:
        The metrics registry
    """
    global _metrics
    _metrics = MetricsRegistry(registry)

    from binlog_pitr import __version__
    _metrics.info.info({
        "version": __version__,
    })

    start_http_server(port, registry=registry or REGISTRY)

    return _metrics


def get_metrics() -> MetricsRegistry:
    """Get the global metrics registry."""
    global _metrics
    if _metrics is None:
        _metrics = MetricsRegistry()
    return _metrics
