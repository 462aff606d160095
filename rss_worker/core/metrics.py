"""Named worker counters and timers on top of the OpenTelemetry meter API.

Metric names follow the ``rss_worker.<step>.<what>`` scheme, e.g.
``rss_worker.handle_rss.articles.parsed``. Instruments are created lazily so a
name only has to be spelled at the call site.
"""

from __future__ import annotations

import time
from collections.abc import Iterator
from contextlib import contextmanager

from opentelemetry import metrics, trace
from opentelemetry.metrics import Counter, Histogram

METRIC_PREFIX = "rss_worker"

tracer = trace.get_tracer(__name__)


class WorkerMetrics:
    def __init__(self, meter: metrics.Meter | None = None) -> None:
        self._meter = meter or metrics.get_meter(__name__)
        self._counters: dict[str, Counter] = {}
        self._histograms: dict[str, Histogram] = {}

    def increment(self, name: str, value: int = 1) -> None:
        if value <= 0:
            return
        counter = self._counters.get(name)
        if counter is None:
            counter = self._meter.create_counter(f"{METRIC_PREFIX}.{name}")
            self._counters[name] = counter
        counter.add(value)

    def timing(self, name: str, value_ms: float) -> None:
        histogram = self._histograms.get(name)
        if histogram is None:
            histogram = self._meter.create_histogram(f"{METRIC_PREFIX}.{name}", unit="ms")
            self._histograms[name] = histogram
        histogram.record(value_ms)

    @contextmanager
    def timer(self, name: str) -> Iterator[None]:
        """Time the wrapped block as a span and a duration histogram."""
        started_at = time.perf_counter()
        with tracer.start_as_current_span(f"{METRIC_PREFIX}.{name}"):
            try:
                yield
            finally:
                self.timing(name, (time.perf_counter() - started_at) * 1000.0)
