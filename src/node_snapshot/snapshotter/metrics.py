"""Snapshot collection Prometheus metrics.

Metrics live on a dedicated CollectorRegistry owned by a SnapshotMetrics
instance, so exports only contain snapshot metrics and tests can create a
fresh set per case.
"""

from __future__ import annotations

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram

PREFIX = "node_snapshot_"


class SnapshotMetrics:
    """Collection duration, attempt and size metrics for one process."""

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self.registry = registry or CollectorRegistry()

        self.collection_duration = Histogram(
            f"{PREFIX}collection_duration_seconds",
            "Time taken to collect a complete node snapshot",
            buckets=[1, 5, 10, 30, 60, 120, 300],
            registry=self.registry,
        )
        self.collector_duration = Histogram(
            f"{PREFIX}collector_duration_seconds",
            "Time taken by individual collectors",
            labelnames=["collector"],
            buckets=[0.1, 0.5, 1, 5, 10, 30],
            registry=self.registry,
        )
        self.collection_total = Counter(
            f"{PREFIX}collection_total",
            "Total number of snapshot collection attempts",
            labelnames=["status"],
            registry=self.registry,
        )
        self.measurements = Gauge(
            f"{PREFIX}measurements",
            "Number of measurements in the last collected snapshot",
            registry=self.registry,
        )

    def observe_collector(self, collector: str, seconds: float) -> None:
        self.collector_duration.labels(collector=collector).observe(seconds)

    def record_success(self, measurement_count: int) -> None:
        self.collection_total.labels(status="success").inc()
        self.measurements.set(measurement_count)

    def record_error(self) -> None:
        self.collection_total.labels(status="error").inc()

    def sample(self, name: str, labels: dict[str, str] | None = None) -> float | None:
        """Current value of a sample by full name, e.g. ``node_snapshot_collection_total``."""
        return self.registry.get_sample_value(name, labels or {})
