from prometheus_client import CollectorRegistry

from memsync.metrics import MemsyncMetrics


def test_instances_do_not_share_collectors() -> None:
    first = MemsyncMetrics()
    second = MemsyncMetrics()
    first.query_executed(True, 1.0)
    assert first.sample("memsync_queries_total", success="true") == 1
    assert second.sample("memsync_queries_total", success="true") is None


def test_memory_usage_sets_gauges() -> None:
    metrics = MemsyncMetrics(CollectorRegistry())
    metrics.memory_usage(250, 1000)
    assert metrics.sample("memsync_memory_bytes", type="used") == 250
    assert metrics.sample("memsync_memory_bytes", type="max") == 1000
    assert metrics.sample("memsync_memory_usage_ratio") == 0.25


def test_sync_completed_counts_transfers_and_items() -> None:
    metrics = MemsyncMetrics()
    metrics.sync_completed("push", 3)
    metrics.sync_completed("push", 0)
    assert metrics.sample("memsync_sync_total", direction="push") == 2
    assert metrics.sample("memsync_sync_items_total", direction="push") == 3


def test_export_renders_text_format() -> None:
    metrics = MemsyncMetrics()
    metrics.query_executed(False, 3.0)
    text = metrics.export()
    assert 'memsync_queries_total{success="false"} 1.0' in text
    assert "memsync_query_duration_ms_bucket" in text
