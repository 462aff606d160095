from __future__ import annotations

from collections import Counter
from typing import Any

import pytest

from rss_worker.core.metrics import WorkerMetrics
from rss_worker.schemas.articles import FeedOut
from rss_worker.services.store import InMemoryRepository


class RecordingMetrics(WorkerMetrics):
    def __init__(self) -> None:
        super().__init__()
        self.counters: Counter[str] = Counter()
        self.timings: dict[str, list[float]] = {}

    def increment(self, name: str, value: int = 1) -> None:
        self.counters[name] += value

    def timing(self, name: str, value_ms: float) -> None:
        self.timings.setdefault(name, []).append(value_ms)


class FakeJobClient:
    def __init__(self, *, fail_urls: set[str] | None = None) -> None:
        self.enqueued: list[dict[str, Any]] = []
        self.fail_urls = fail_urls or set()

    async def enqueue_job(
        self,
        kind: str,
        inputs: dict[str, Any],
        *,
        remove_on_complete: bool = False,
        remove_on_fail: bool = False,
    ) -> str:
        if inputs.get("url") in self.fail_urls:
            raise RuntimeError("queue unavailable")
        self.enqueued.append(
            {
                "kind": kind,
                "inputs": inputs,
                "remove_on_complete": remove_on_complete,
                "remove_on_fail": remove_on_fail,
            }
        )
        return f"job-{len(self.enqueued)}"


class FakeStreamClient:
    def __init__(self, *, fail_on_call: int | None = None) -> None:
        self.batches: list[tuple[str, str, list[dict[str, Any]]]] = []
        self.notified: list[FeedOut] = []
        self.fail_on_call = fail_on_call

    async def add_activities(self, namespace: str, feed_id: str, activities: list[dict[str, Any]]) -> None:
        if self.fail_on_call is not None and len(self.batches) == self.fail_on_call:
            raise RuntimeError("stream unavailable")
        self.batches.append((namespace, feed_id, activities))

    async def send_feed_to_collections(self, feed: FeedOut) -> None:
        self.notified.append(feed)

    @property
    def activities(self) -> list[dict[str, Any]]:
        return [activity for _, _, batch in self.batches for activity in batch]


@pytest.fixture
def metrics() -> RecordingMetrics:
    return RecordingMetrics()


@pytest.fixture
def repository() -> InMemoryRepository:
    repo = InMemoryRepository()
    repo.add_feed("feed-1", url="https://a.com/rss")
    return repo


@pytest.fixture
def job_client() -> FakeJobClient:
    return FakeJobClient()


@pytest.fixture
def stream_client() -> FakeStreamClient:
    return FakeStreamClient()
