from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Sequence
from typing import Any

from rss_worker.core.metrics import WorkerMetrics
from rss_worker.schemas.articles import FeedOut, StoredArticle
from rss_worker.services.job_client import JobClient
from rss_worker.services.stream_client import StreamClient

logger = logging.getLogger(__name__)

ENRICHMENT_JOB_KIND = "og"
ACTIVITY_VERB = "rss_article"


def build_activity(article: StoredArticle) -> dict[str, Any]:
    return {
        "actor": article.feed_id,
        "foreign_id": f"articles:{article.id}",
        "object": article.id,
        "time": article.publication_date.isoformat() if article.publication_date else None,
        "verb": ACTIVITY_VERB,
    }


async def schedule_enrichment(
    job_client: JobClient,
    articles: Sequence[StoredArticle],
    *,
    metrics: WorkerMetrics,
) -> int:
    """Best-effort enrichment scheduling; returns how many enqueues failed."""
    with metrics.timer("handle_rss.enqueue_enrichment"):
        outcomes = await asyncio.gather(
            *(
                job_client.enqueue_job(
                    ENRICHMENT_JOB_KIND,
                    {"type": "article", "url": article.url},
                    remove_on_complete=True,
                    remove_on_fail=True,
                )
                for article in articles
            ),
            return_exceptions=True,
        )

    failures = 0
    for article, outcome in zip(articles, outcomes):
        if isinstance(outcome, Exception):
            failures += 1
            logger.warning("enrichment enqueue failed for url=%s: %s", article.url, outcome)
    metrics.increment("handle_rss.enrichment.enqueue_failed", failures)
    return failures


async def publish_activities(
    stream_client: StreamClient,
    feed_id: str,
    articles: Sequence[StoredArticle],
    *,
    namespace: str = "rss",
    chunk_size: int = 100,
) -> int:
    published = 0
    for start in range(0, len(articles), chunk_size):
        chunk = articles[start : start + chunk_size]
        await stream_client.add_activities(namespace, feed_id, [build_activity(article) for article in chunk])
        published += len(chunk)
    return published


async def dispatch_new_articles(
    feed: FeedOut,
    articles: Sequence[StoredArticle],
    *,
    job_client: JobClient,
    stream_client: StreamClient,
    metrics: WorkerMetrics,
    namespace: str = "rss",
    chunk_size: int = 100,
) -> int:
    """Announce first-time articles: enrichment jobs, then stream activities, then collections."""
    if not articles:
        logger.info("syncing 0 articles to stream for feed %s", feed.id)
        return 0

    await schedule_enrichment(job_client, articles, metrics=metrics)

    started_at = time.perf_counter()
    logger.info("syncing %d articles to stream for feed %s", len(articles), feed.id)
    published = await publish_activities(
        stream_client,
        feed.id,
        articles,
        namespace=namespace,
        chunk_size=max(1, chunk_size),
    )
    await stream_client.send_feed_to_collections(feed)
    metrics.timing("handle_rss.send_to_stream", (time.perf_counter() - started_at) * 1000.0)
    return published
