from __future__ import annotations

import asyncio
import logging
import random
import time
from functools import partial
from typing import Any

from opentelemetry import trace

from rss_worker.core.config import Settings, get_settings
from rss_worker.core.metrics import WorkerMetrics
from rss_worker.core.telemetry import (
    configure_worker_logging,
    setup_worker_telemetry,
    shutdown_worker_telemetry,
)
from rss_worker.jobs.ingest import FeedRepository, RssIngestor
from rss_worker.services.feed_parser import fetch_and_parse
from rss_worker.services.job_client import JobClient
from rss_worker.services.repository import PostgresRepository, RepositoryUnavailableError
from rss_worker.services.store import InMemoryRepository
from rss_worker.services.stream_client import StreamClient

RSS_JOB_KIND = "rss"

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


def build_repository(settings: Settings) -> PostgresRepository | InMemoryRepository:
    if not settings.database_url:
        logger.warning("RSS_WORKER_DATABASE_URL not set; using the in-memory article store")
        return InMemoryRepository()
    return PostgresRepository(
        database_url=settings.database_url,
        min_pool_size=settings.database_pool_min_size,
        max_pool_size=settings.database_pool_max_size,
    )


def build_ingestor(
    settings: Settings,
    *,
    repository: FeedRepository,
    job_client: JobClient,
    stream_client: StreamClient,
) -> RssIngestor:
    return RssIngestor(
        repository=repository,
        fetch_feed=partial(
            fetch_and_parse,
            timeout_seconds=settings.feed_fetch_timeout_seconds,
            user_agent=settings.feed_user_agent,
        ),
        job_client=job_client,
        stream_client=stream_client,
        metrics=WorkerMetrics(),
        upsert_concurrency=settings.upsert_concurrency,
        stream_namespace=settings.stream_namespace,
        stream_chunk_size=settings.stream_chunk_size,
    )


async def prepare_repository(repository: PostgresRepository | InMemoryRepository, settings: Settings) -> None:
    """Create the schema, retrying with backoff while the database is unreachable."""
    backoff = settings.poll_interval_seconds
    while True:
        try:
            await repository.ensure_schema()
            return
        except RepositoryUnavailableError as exc:
            jitter = random.uniform(0.0, 0.5)
            sleep_for = min(backoff * (2.0 + jitter), settings.max_backoff_seconds)
            logger.warning("schema bootstrap failed: %s; retry in %.1fs", exc, sleep_for)
            await asyncio.sleep(sleep_for)
            backoff = sleep_for


async def run_claimed_job(client: JobClient, ingestor: RssIngestor, job: dict[str, Any]) -> None:
    with tracer.start_as_current_span("worker.process_job") as job_span:
        job_span.set_attribute("job.id", job["id"])
        try:
            result = await ingestor.handle_job(job)
            if result.succeeded:
                await client.submit_result(job["id"], status="done", result_json=result.model_dump())
            else:
                await client.submit_result(
                    job["id"],
                    status="failed",
                    error_json={"reason": result.reason, "error": result.error},
                    result_json=result.model_dump(),
                )
        except Exception:  # pragma: no cover - bootstrap robustness
            logger.exception("job result submission failed for id=%s", job["id"])


async def run_worker() -> None:
    settings = get_settings()
    configure_worker_logging()
    telemetry_runtime = setup_worker_telemetry(settings)
    client = JobClient(
        base_url=settings.api_base_url,
        module_id=settings.module_id,
        api_key=settings.api_key,
    )
    stream_client = StreamClient(base_url=settings.stream_base_url, api_key=settings.stream_api_key)
    repository = build_repository(settings)
    ingestor = build_ingestor(settings, repository=repository, job_client=client, stream_client=stream_client)

    concurrency = max(1, settings.job_concurrency)
    in_flight: set[asyncio.Task[None]] = set()
    backoff = settings.poll_interval_seconds
    last_reap_at = 0.0

    logger.info("starting rss worker with concurrency=%s", concurrency)
    try:
        await prepare_repository(repository, settings)
        while True:
            try:
                if len(in_flight) >= concurrency:
                    await asyncio.wait(in_flight, return_when=asyncio.FIRST_COMPLETED)
                    continue

                with tracer.start_as_current_span("worker.poll_cycle"):
                    now = time.monotonic()
                    if now - last_reap_at >= settings.lease_reaper_interval_seconds:
                        requeued = await client.reap_expired_jobs(limit=settings.lease_reaper_batch_size)
                        if requeued:
                            logger.info("requeued expired leases: %s", requeued)
                        last_reap_at = now

                    limit = min(settings.poll_batch_size, concurrency - len(in_flight))
                    jobs = await client.get_jobs(limit=limit, kind=RSS_JOB_KIND)
                    if not jobs:
                        await asyncio.sleep(settings.poll_interval_seconds)
                        continue

                    for job in jobs:
                        claimed = await client.claim_job(job["id"], lease_seconds=settings.claim_lease_seconds)
                        task = asyncio.create_task(run_claimed_job(client, ingestor, claimed))
                        in_flight.add(task)
                        task.add_done_callback(in_flight.discard)

                backoff = settings.poll_interval_seconds
            except Exception as exc:  # pragma: no cover - bootstrap robustness
                jitter = random.uniform(0.0, 0.5)
                sleep_for = min(backoff * (2.0 + jitter), settings.max_backoff_seconds)
                logger.exception("worker iteration failed: %s; retry in %.1fs", exc, sleep_for)
                await asyncio.sleep(sleep_for)
                backoff = sleep_for
    finally:
        if in_flight:
            await asyncio.gather(*in_flight, return_exceptions=True)
        await repository.close()
        shutdown_worker_telemetry(telemetry_runtime)


def main() -> None:
    asyncio.run(run_worker())


if __name__ == "__main__":
    main()
