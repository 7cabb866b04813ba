from __future__ import annotations

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, generate_latest

QUERY_DURATION_BUCKETS_MS = (0.5, 1.0, 2.5, 5.0, 10.0, 25.0, 50.0, 100.0, 250.0, 1000.0)


class MemsyncMetrics:
    """Prometheus collectors bound to a registry this instance owns.

    Construct one at startup, hand it to the monitor and sync manager, and
    read it with ``export()`` at scrape time.
    """

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self.registry = registry or CollectorRegistry()
        self.queries_total = Counter(
            "memsync_queries",
            "Queries executed through the memory monitor",
            ["success"],
            registry=self.registry,
        )
        self.query_duration_ms = Histogram(
            "memsync_query_duration_ms",
            "Query execution time in milliseconds",
            buckets=QUERY_DURATION_BUCKETS_MS,
            registry=self.registry,
        )
        self.memory_bytes = Gauge(
            "memsync_memory_bytes",
            "Estimated bytes written to the in-memory store",
            ["type"],
            registry=self.registry,
        )
        self.memory_usage_ratio = Gauge(
            "memsync_memory_usage_ratio",
            "Estimated bytes written divided by the configured limit",
            registry=self.registry,
        )
        self.sync_total = Counter(
            "memsync_sync",
            "Completed sync transfers",
            ["direction"],
            registry=self.registry,
        )
        self.sync_items_total = Counter(
            "memsync_sync_items",
            "Records transferred by sync",
            ["direction"],
            registry=self.registry,
        )

    def query_executed(self, success: bool, duration_ms: float) -> None:
        self.queries_total.labels(success="true" if success else "false").inc()
        self.query_duration_ms.observe(duration_ms)

    def memory_usage(self, bytes_written: int, max_bytes: int) -> None:
        self.memory_bytes.labels(type="used").set(bytes_written)
        self.memory_bytes.labels(type="max").set(max_bytes)
        self.memory_usage_ratio.set(bytes_written / max_bytes if max_bytes else 0.0)

    def sync_completed(self, direction: str, item_count: int) -> None:
        self.sync_total.labels(direction=direction).inc()
        self.sync_items_total.labels(direction=direction).inc(item_count)

    def sample(self, name: str, **labels: str) -> float | None:
        return self.registry.get_sample_value(name, labels or None)

    def export(self) -> str:
        return generate_latest(self.registry).decode("utf-8")
