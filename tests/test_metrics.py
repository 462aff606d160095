from __future__ import annotations

from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import InMemoryMetricReader

from rss_worker.core.metrics import WorkerMetrics


def _collect(reader: InMemoryMetricReader) -> dict[str, list]:
    collected: dict[str, list] = {}
    data = reader.get_metrics_data()
    for resource_metrics in data.resource_metrics:
        for scope_metrics in resource_metrics.scope_metrics:
            for metric in scope_metrics.metrics:
                collected[metric.name] = list(metric.data.data_points)
    return collected


def test_worker_metrics_records_counters_and_timers() -> None:
    reader = InMemoryMetricReader()
    provider = MeterProvider(metric_readers=[reader])
    worker_metrics = WorkerMetrics(provider.get_meter("test"))

    worker_metrics.increment("handle_rss.articles.parsed", 3)
    worker_metrics.increment("handle_rss.articles.parsed", 2)
    worker_metrics.increment("handle_rss.articles.ignored", 0)
    with worker_metrics.timer("handle_rss.parsing"):
        pass

    collected = _collect(reader)

    assert collected["rss_worker.handle_rss.articles.parsed"][0].value == 5
    assert "rss_worker.handle_rss.articles.ignored" not in collected
    assert collected["rss_worker.handle_rss.parsing"][0].count == 1
    provider.shutdown()
