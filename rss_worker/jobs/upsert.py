"""Batch deduplication and diff-aware upsert of feed articles.

``prefilter_articles`` discards candidates that are already stored verbatim
with one batched query. Its test is deliberately coarse: a candidate is
skipped when its URL *or* its content hash appears among the exact
(url, content_hash) matches, so a new URL whose content equals some other
stored duplicate is skipped as well. ``upsert_article`` then writes each
survivor with a single find-or-create-or-update call and absorbs unique
constraint races.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from typing import Protocol

from rss_worker.core.metrics import WorkerMetrics
from rss_worker.schemas.articles import ArticleCandidate, StoredArticle
from rss_worker.services.repository import RepositoryDuplicateError

logger = logging.getLogger(__name__)


class ArticleRepository(Protocol):
    async def find_existing_articles(
        self,
        feed_id: str,
        pairs: Sequence[tuple[str, str]],
    ) -> list[tuple[str, str]]: ...

    async def upsert_article(self, feed_id: str, article: ArticleCandidate) -> StoredArticle | None: ...


async def prefilter_articles(
    repository: ArticleRepository,
    feed_id: str,
    articles: Sequence[ArticleCandidate],
    *,
    metrics: WorkerMetrics,
) -> list[ArticleCandidate]:
    if not articles:
        return []

    existing = await repository.find_existing_articles(
        feed_id,
        [(article.url, article.content_hash) for article in articles],
    )
    seen_urls = {url for url, _ in existing}
    seen_hashes = {content_hash for _, content_hash in existing}
    metrics.increment("handle_rss.articles.already_stored", len(seen_urls))

    survivors = [
        article
        for article in articles
        if article.url not in seen_urls and article.content_hash not in seen_hashes
    ]
    logger.info("feed %s: got %d articles of which %d need a sync", feed_id, len(articles), len(survivors))
    return survivors


async def upsert_article(
    repository: ArticleRepository,
    feed_id: str,
    article: ArticleCandidate,
    *,
    metrics: WorkerMetrics,
) -> StoredArticle | None:
    """Return the stored article only when it was inserted for the first time."""
    try:
        return await repository.upsert_article(feed_id, article)
    except RepositoryDuplicateError:
        logger.debug("ignored duplicate article feed=%s url=%s", feed_id, article.url)
        metrics.increment("handle_rss.articles.ignored")
        return None


async def upsert_many_articles(
    repository: ArticleRepository,
    feed_id: str,
    articles: Sequence[ArticleCandidate],
    *,
    metrics: WorkerMetrics,
    concurrency: int = 20,
) -> list[StoredArticle | None]:
    survivors = await prefilter_articles(repository, feed_id, articles, metrics=metrics)
    if not survivors:
        return []

    semaphore = asyncio.Semaphore(max(1, concurrency))

    async def bounded_upsert(article: ArticleCandidate) -> StoredArticle | None:
        async with semaphore:
            return await upsert_article(repository, feed_id, article, metrics=metrics)

    return list(await asyncio.gather(*(bounded_upsert(article) for article in survivors)))
