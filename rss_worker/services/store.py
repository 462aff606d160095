import asyncio
from collections.abc import Sequence
from datetime import datetime, timezone
from uuid import uuid4

from rss_worker.schemas.articles import CONTENT_HASH_FIELDS, ArticleCandidate, FeedOut, StoredArticle
from rss_worker.services.repository import RepositoryDuplicateError


class InMemoryRepository:
    """Process-local store with the same contract as PostgresRepository.

    Used when no database is configured and by the test-suite. Each write is a
    probe followed by a separate commit step with an event-loop yield between
    them, so concurrent tasks interleave the way they do against a networked
    store, and the (feed_id, url) uniqueness check is what settles races.
    """

    def __init__(self) -> None:
        self.feeds: dict[str, FeedOut] = {}
        self.articles: dict[tuple[str, str], StoredArticle] = {}

    async def close(self) -> None:
        return None

    async def ensure_schema(self) -> None:
        return None

    def add_feed(self, feed_id: str, url: str | None = None, **fields) -> FeedOut:
        feed = FeedOut(id=feed_id, url=url, **fields)
        self.feeds[feed_id] = feed
        return feed

    async def get_feed(self, feed_id: str) -> FeedOut | None:
        feed = self.feeds.get(feed_id)
        return feed.model_copy() if feed is not None else None

    async def mark_feed_done(self, feed_id: str, *, scraped_at: datetime) -> None:
        feed = self.feeds.get(feed_id)
        if feed is None:
            return
        feed.last_scraped_at = scraped_at
        feed.is_parsing = False

    async def reset_scrape_failures(self, feed_id: str) -> None:
        feed = self.feeds.get(feed_id)
        if feed is not None:
            feed.consecutive_scrape_failures = 0

    async def increment_scrape_failures(self, feed_id: str) -> int:
        feed = self.feeds.get(feed_id)
        if feed is None:
            return 0
        feed.consecutive_scrape_failures += 1
        return feed.consecutive_scrape_failures

    async def find_existing_articles(
        self,
        feed_id: str,
        pairs: Sequence[tuple[str, str]],
    ) -> list[tuple[str, str]]:
        wanted = set(pairs)
        return [
            (article.url, article.content_hash)
            for (article_feed_id, _), article in self.articles.items()
            if article_feed_id == feed_id and (article.url, article.content_hash) in wanted
        ]

    async def upsert_article(self, feed_id: str, article: ArticleCandidate) -> StoredArticle | None:
        key = (feed_id, article.url)
        existing = self.articles.get(key)
        if existing is not None and _content_differs(existing, article):
            now = datetime.now(timezone.utc)
            self.articles[key] = existing.model_copy(
                update={**article.model_dump(), "updated_at": now},
            )
            return None

        await asyncio.sleep(0)

        if key in self.articles:
            raise RepositoryDuplicateError(f"duplicate article for feed={feed_id} url={article.url}")
        now = datetime.now(timezone.utc)
        stored = StoredArticle(
            **article.model_dump(),
            id=str(uuid4()),
            feed_id=feed_id,
            created_at=now,
            updated_at=now,
        )
        self.articles[key] = stored
        return stored.model_copy()

    async def refresh_article_count(self, feed_id: str) -> int:
        feed = self.feeds.get(feed_id)
        if feed is None:
            return 0
        feed.article_count = sum(1 for article_feed_id, _ in self.articles if article_feed_id == feed_id)
        return feed.article_count


def _content_differs(stored: StoredArticle, candidate: ArticleCandidate) -> bool:
    return any(getattr(stored, field) != getattr(candidate, field) for field in CONTENT_HASH_FIELDS)
