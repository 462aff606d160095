from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import pytest

from rss_worker.jobs.fanout import build_activity, dispatch_new_articles
from rss_worker.schemas.articles import FeedOut, StoredArticle

from conftest import FakeJobClient, FakeStreamClient


def _stored(index: int) -> StoredArticle:
    now = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)
    return StoredArticle(
        id=f"article-{index}",
        feed_id="feed-1",
        url=f"https://a.com/{index}",
        content_hash=f"hash-{index}",
        title=f"T{index}",
        publication_date=now,
        created_at=now,
        updated_at=now,
    )


def test_build_activity_shape() -> None:
    activity = build_activity(_stored(7))

    assert activity == {
        "actor": "feed-1",
        "foreign_id": "articles:article-7",
        "object": "article-7",
        "time": "2024-03-01T12:00:00+00:00",
        "verb": "rss_article",
    }


def test_dispatch_chunks_activities_and_schedules_enrichment(metrics, job_client, stream_client) -> None:
    feed = FeedOut(id="feed-1", url="https://a.com/rss")
    articles = [_stored(index) for index in range(250)]

    published = asyncio.run(
        dispatch_new_articles(
            feed,
            articles,
            job_client=job_client,
            stream_client=stream_client,
            metrics=metrics,
            chunk_size=100,
        )
    )

    assert published == 250
    assert [len(batch) for _, _, batch in stream_client.batches] == [100, 100, 50]
    assert {(namespace, feed_id) for namespace, feed_id, _ in stream_client.batches} == {("rss", "feed-1")}
    assert [activity["object"] for activity in stream_client.activities] == [article.id for article in articles]
    assert len(job_client.enqueued) == 250
    assert job_client.enqueued[0] == {
        "kind": "og",
        "inputs": {"type": "article", "url": "https://a.com/0"},
        "remove_on_complete": True,
        "remove_on_fail": True,
    }
    assert stream_client.notified == [feed]
    assert "handle_rss.send_to_stream" in metrics.timings


def test_dispatch_without_articles_publishes_nothing(metrics, job_client, stream_client) -> None:
    feed = FeedOut(id="feed-1")

    published = asyncio.run(
        dispatch_new_articles(feed, [], job_client=job_client, stream_client=stream_client, metrics=metrics)
    )

    assert published == 0
    assert stream_client.batches == []
    assert stream_client.notified == []
    assert job_client.enqueued == []


def test_dispatch_tolerates_enrichment_failures(metrics, stream_client) -> None:
    job_client = FakeJobClient(fail_urls={"https://a.com/1"})
    articles = [_stored(0), _stored(1), _stored(2)]

    published = asyncio.run(
        dispatch_new_articles(
            FeedOut(id="feed-1"),
            articles,
            job_client=job_client,
            stream_client=stream_client,
            metrics=metrics,
        )
    )

    assert published == 3
    assert [entry["inputs"]["url"] for entry in job_client.enqueued] == ["https://a.com/0", "https://a.com/2"]
    assert metrics.counters["handle_rss.enrichment.enqueue_failed"] == 1


def test_dispatch_keeps_published_chunks_when_a_later_chunk_fails(metrics, job_client) -> None:
    stream_client = FakeStreamClient(fail_on_call=1)
    articles = [_stored(index) for index in range(150)]

    with pytest.raises(RuntimeError):
        asyncio.run(
            dispatch_new_articles(
                FeedOut(id="feed-1"),
                articles,
                job_client=job_client,
                stream_client=stream_client,
                metrics=metrics,
                chunk_size=100,
            )
        )

    assert [len(batch) for _, _, batch in stream_client.batches] == [100]
    assert stream_client.notified == []
