"""Per-job lifecycle for rss ingestion.

A job runs in two phases. ``ack`` marks the feed as scraped and no longer
parsing before any work starts, so a slow or failing run never keeps the feed
out of the scheduler. ``process`` then fetches, normalizes, upserts and fans
out. ``handle`` runs both and folds every failure into an ``IngestResult``;
nothing is retried here.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from typing import Any, Protocol

from opentelemetry import trace
from pydantic import ValidationError

from rss_worker.core.metrics import WorkerMetrics
from rss_worker.jobs.fanout import dispatch_new_articles
from rss_worker.jobs.normalize import normalize_candidates
from rss_worker.jobs.upsert import ArticleRepository, upsert_many_articles
from rss_worker.schemas.articles import FeedOut, ParsedFeed
from rss_worker.schemas.jobs import IngestJob, IngestResult
from rss_worker.services.feed_parser import FeedFetchError
from rss_worker.services.job_client import JobClient
from rss_worker.services.repository import RepositoryError
from rss_worker.services.stream_client import StreamClient

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

FeedFetcher = Callable[[str], Awaitable[ParsedFeed]]


class FeedRepository(ArticleRepository, Protocol):
    async def get_feed(self, feed_id: str) -> FeedOut | None: ...

    async def mark_feed_done(self, feed_id: str, *, scraped_at: datetime) -> None: ...

    async def reset_scrape_failures(self, feed_id: str) -> None: ...

    async def increment_scrape_failures(self, feed_id: str) -> int: ...

    async def refresh_article_count(self, feed_id: str) -> int: ...


def parse_ingest_job(job: dict[str, Any]) -> IngestJob:
    raw_inputs = job.get("inputs_json")
    inputs: dict[str, Any] = raw_inputs if isinstance(raw_inputs, dict) else {}
    return IngestJob.model_validate(inputs)


class RssIngestor:
    def __init__(
        self,
        *,
        repository: FeedRepository,
        fetch_feed: FeedFetcher,
        job_client: JobClient,
        stream_client: StreamClient,
        metrics: WorkerMetrics,
        upsert_concurrency: int = 20,
        stream_namespace: str = "rss",
        stream_chunk_size: int = 100,
    ) -> None:
        self.repository = repository
        self.fetch_feed = fetch_feed
        self.job_client = job_client
        self.stream_client = stream_client
        self.metrics = metrics
        self.upsert_concurrency = upsert_concurrency
        self.stream_namespace = stream_namespace
        self.stream_chunk_size = stream_chunk_size

    async def handle_job(self, job: dict[str, Any]) -> IngestResult:
        """Entry point for a claimed queue job."""
        try:
            ingest_job = parse_ingest_job(job)
        except ValidationError as exc:
            logger.error("invalid rss job id=%s: %s", job.get("id"), exc)
            raw_inputs = job.get("inputs_json")
            inputs: dict[str, Any] = raw_inputs if isinstance(raw_inputs, dict) else {}
            return IngestResult(
                feed_id=str(inputs.get("feed_id") or ""),
                url=str(inputs.get("url") or ""),
                status="failed",
                reason="invalid_job",
                error=str(exc),
            )
        return await self.handle(ingest_job)

    async def handle(self, job: IngestJob) -> IngestResult:
        logger.info("processing feed=%s url=%s", job.feed_id, job.url)
        with tracer.start_as_current_span("rss_worker.handle_rss") as span:
            span.set_attribute("feed.id", job.feed_id)
            span.set_attribute("feed.url", job.url)
            try:
                await self.ack(job)
                result = await self.process(job)
            except FeedFetchError as exc:
                logger.warning("rss job fetch failed feed=%s url=%s: %s", job.feed_id, job.url, exc)
                result = self._failed(job, "fetch_failed", exc)
            except RepositoryError as exc:
                logger.exception("rss job store error feed=%s url=%s", job.feed_id, job.url)
                result = self._failed(job, "store_error", exc)
            except Exception as exc:
                logger.exception("rss job encountered an error feed=%s url=%s", job.feed_id, job.url)
                result = self._failed(job, "unexpected_error", exc)
            span.set_attribute("rss.status", result.status)
            span.set_attribute("rss.reason", result.reason)

        logger.info("completed scraping feed=%s url=%s status=%s", job.feed_id, job.url, result.status)
        return result

    async def ack(self, job: IngestJob) -> None:
        with self.metrics.timer("handle_rss.ack"):
            await self.repository.mark_feed_done(job.feed_id, scraped_at=datetime.now(timezone.utc))

    async def process(self, job: IngestJob) -> IngestResult:
        with self.metrics.timer("handle_rss.get_feed"):
            feed = await self.repository.get_feed(job.feed_id)
        if feed is None:
            logger.warning("feed %s does not exist", job.feed_id)
            return IngestResult(feed_id=job.feed_id, url=job.url, status="skipped", reason="feed_not_found")

        with self.metrics.timer("handle_rss.parsing"):
            content = await self.fetch_with_failure_count(job)

        logger.info("updating %d articles for feed %s", len(content.articles), job.feed_id)
        if not content.articles:
            return IngestResult(feed_id=job.feed_id, url=job.url, status="done", reason="no_articles")

        self.metrics.increment("handle_rss.articles.parsed", len(content.articles))

        with self.metrics.timer("handle_rss.upsert_many_articles"):
            candidates = normalize_candidates(content.articles, feed_id=job.feed_id)
            upserted = await upsert_many_articles(
                self.repository,
                job.feed_id,
                candidates,
                metrics=self.metrics,
                concurrency=self.upsert_concurrency,
            )

        await self.repository.refresh_article_count(job.feed_id)

        new_articles = [article for article in upserted if article is not None]
        self.metrics.increment("handle_rss.articles.upserted", len(new_articles))

        announced = await dispatch_new_articles(
            feed,
            new_articles,
            job_client=self.job_client,
            stream_client=self.stream_client,
            metrics=self.metrics,
            namespace=self.stream_namespace,
            chunk_size=self.stream_chunk_size,
        )
        return IngestResult(
            feed_id=job.feed_id,
            url=job.url,
            status="done",
            reason="synced",
            parsed=len(content.articles),
            normalized=len(candidates),
            upserted=len(new_articles),
            announced=announced,
        )

    async def fetch_with_failure_count(self, job: IngestJob) -> ParsedFeed:
        try:
            content = await self.fetch_feed(job.url)
        except Exception:
            await self.repository.increment_scrape_failures(job.feed_id)
            raise
        await self.repository.reset_scrape_failures(job.feed_id)
        return content

    @staticmethod
    def _failed(job: IngestJob, reason: str, exc: BaseException) -> IngestResult:
        return IngestResult(
            feed_id=job.feed_id,
            url=job.url,
            status="failed",
            reason=reason,
            error=str(exc),
        )
