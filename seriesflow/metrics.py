"""Self-monitoring metrics using prometheus_client."""
from prometheus_client import (
    CollectorRegistry, Counter, Gauge, Histogram, generate_latest
)


class SelfMetrics:
    """Ingestion, store and live-channel metrics on a private registry."""

    def __init__(self, registry=None, prefix=""):
        if registry is None:
            # Use a custom registry to avoid exporting default Python/process metrics
            registry = CollectorRegistry()
        self.registry = registry

        self.ticks_total = Counter(
            f"{prefix}ingest_ticks_total",
            "Total number of ingestion ticks by outcome",
            ["outcome"],
            registry=registry
        )

        self.tick_duration_seconds = Histogram(
            f"{prefix}ingest_tick_duration_seconds",
            "Duration of each ingestion tick in seconds",
            buckets=[0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0],
            registry=registry
        )

        self.appends_total = Counter(
            f"{prefix}store_appends_total",
            "Total number of samples appended to the store",
            registry=registry
        )

        self.series_created_total = Counter(
            f"{prefix}store_series_created_total",
            "Total number of series auto-created on first append",
            registry=registry
        )

        self.live_dropped_total = Counter(
            f"{prefix}live_dropped_total",
            "Live samples dropped from full subscriber queues",
            registry=registry
        )

        self.live_subscribers = Gauge(
            f"{prefix}live_subscribers",
            "Number of live subscribers per series",
            ["key"],
            registry=registry
        )

    def record_tick(self, outcome: str, duration: float):
        """Record one ingestion tick."""
        self.ticks_total.labels(outcome=outcome).inc()
        self.tick_duration_seconds.observe(duration)

    def record_append(self):
        self.appends_total.inc()

    def record_series_created(self):
        self.series_created_total.inc()

    def record_dropped(self, count: int = 1):
        self.live_dropped_total.inc(count)

    def set_subscribers(self, key: str, count: int):
        self.live_subscribers.labels(key=key).set(count)

    def render(self) -> bytes:
        """Prometheus text exposition of this registry."""
        return generate_latest(self.registry)
