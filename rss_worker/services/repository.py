from __future__ import annotations

import json
from collections.abc import Sequence
from datetime import datetime
from typing import Any

import asyncpg  # type: ignore[import-untyped]
from asyncpg import exceptions as pg_exc

from rss_worker.schemas.articles import ArticleCandidate, FeedOut, StoredArticle


class RepositoryError(Exception):
    """Base repository error."""


class RepositoryUnavailableError(RepositoryError):
    """Raised when the database is unavailable or not configured."""


class RepositoryDuplicateError(RepositoryError):
    """Raised when an insert loses a race on the (feed_id, url) unique constraint."""


SCHEMA_SQL = """
create table if not exists feeds (
  id text primary key,
  url text,
  title text,
  last_scraped_at timestamptz,
  is_parsing boolean not null default false,
  consecutive_scrape_failures integer not null default 0,
  article_count integer not null default 0
);

create table if not exists articles (
  id uuid primary key default gen_random_uuid(),
  feed_id text not null references feeds (id) on delete cascade,
  url text not null,
  title text,
  description text,
  content text,
  comment_url text,
  content_hash text not null,
  enclosures jsonb not null default '{}'::jsonb,
  images jsonb not null default '{}'::jsonb,
  publication_date timestamptz,
  created_at timestamptz not null default now(),
  updated_at timestamptz not null default now()
);

create unique index if not exists articles_feed_id_url_key on articles (feed_id, url);
create index if not exists articles_feed_id_content_hash_idx on articles (feed_id, content_hash);
"""

ARTICLE_COLUMNS = """
  id::text as id,
  feed_id,
  url,
  title,
  description,
  content,
  comment_url,
  content_hash,
  enclosures,
  images,
  publication_date,
  created_at,
  updated_at
"""


class PostgresRepository:
    def __init__(self, database_url: str | None, min_pool_size: int, max_pool_size: int) -> None:
        self.database_url = database_url
        self.min_pool_size = min_pool_size
        self.max_pool_size = max_pool_size
        self._pool: asyncpg.Pool | None = None

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    async def ensure_schema(self) -> None:
        pool = await self._get_pool()
        await pool.execute(SCHEMA_SQL)

    async def get_feed(self, feed_id: str) -> FeedOut | None:
        pool = await self._get_pool()
        row = await pool.fetchrow(
            """
            select
              id,
              url,
              title,
              last_scraped_at,
              is_parsing,
              consecutive_scrape_failures,
              article_count
            from feeds
            where id = $1
            """,
            feed_id,
        )
        if row is None:
            return None
        return FeedOut(**dict(row))

    async def mark_feed_done(self, feed_id: str, *, scraped_at: datetime) -> None:
        pool = await self._get_pool()
        await pool.execute(
            "update feeds set last_scraped_at = $2, is_parsing = false where id = $1",
            feed_id,
            scraped_at,
        )

    async def reset_scrape_failures(self, feed_id: str) -> None:
        pool = await self._get_pool()
        await pool.execute("update feeds set consecutive_scrape_failures = 0 where id = $1", feed_id)

    async def increment_scrape_failures(self, feed_id: str) -> int:
        pool = await self._get_pool()
        row = await pool.fetchrow(
            """
            update feeds
            set consecutive_scrape_failures = consecutive_scrape_failures + 1
            where id = $1
            returning consecutive_scrape_failures
            """,
            feed_id,
        )
        if row is None:
            return 0
        return int(row["consecutive_scrape_failures"])

    async def find_existing_articles(
        self,
        feed_id: str,
        pairs: Sequence[tuple[str, str]],
    ) -> list[tuple[str, str]]:
        """Return stored (url, content_hash) pairs matching any of ``pairs`` exactly."""
        if not pairs:
            return []
        pool = await self._get_pool()
        rows = await pool.fetch(
            """
            select distinct a.url, a.content_hash
            from articles a
            join unnest($2::text[], $3::text[]) as c (url, content_hash)
              on a.url = c.url and a.content_hash = c.content_hash
            where a.feed_id = $1
            """,
            feed_id,
            [url for url, _ in pairs],
            [content_hash for _, content_hash in pairs],
        )
        return [(row["url"], row["content_hash"]) for row in rows]

    async def upsert_article(self, feed_id: str, article: ArticleCandidate) -> StoredArticle | None:
        """Insert the article, or overwrite the stored one when its content differs.

        Returns the stored article only when a new row was inserted. An update
        returns ``None``. When the row already exists with identical content
        the insert branch hits the unique index and ``RepositoryDuplicateError``
        is raised, exactly as for a concurrent insert.
        """
        pool = await self._get_pool()
        try:
            row = await pool.fetchrow(
                f"""
                with updated as (
                  update articles
                  set
                    title = $3::text,
                    description = $4::text,
                    content = $5::text,
                    comment_url = $6::text,
                    content_hash = $7::text,
                    enclosures = $8::jsonb,
                    images = $9::jsonb,
                    publication_date = $10::timestamptz,
                    updated_at = now()
                  where feed_id = $1::text
                    and url = $2::text
                    and (
                      title is distinct from $3::text
                      or description is distinct from $4::text
                      or content is distinct from $5::text
                      or comment_url is distinct from $6::text
                    )
                  returning id
                )
                insert into articles (
                  feed_id,
                  url,
                  title,
                  description,
                  content,
                  comment_url,
                  content_hash,
                  enclosures,
                  images,
                  publication_date
                )
                select $1::text, $2::text, $3::text, $4::text, $5::text, $6::text, $7::text, $8::jsonb, $9::jsonb, $10::timestamptz
                where not exists (select 1 from updated)
                returning {ARTICLE_COLUMNS}
                """,
                feed_id,
                article.url,
                article.title,
                article.description,
                article.content,
                article.comment_url,
                article.content_hash,
                json.dumps(article.enclosures),
                json.dumps(article.images),
                article.publication_date,
            )
        except pg_exc.UniqueViolationError as exc:
            raise RepositoryDuplicateError(str(exc)) from exc
        except asyncpg.PostgresError as exc:
            raise RepositoryError(str(exc)) from exc

        if row is None:
            return None
        return self._article_row_to_model(row)

    async def refresh_article_count(self, feed_id: str) -> int:
        pool = await self._get_pool()
        row = await pool.fetchrow(
            """
            update feeds
            set article_count = (select count(*) from articles where feed_id = $1)
            where id = $1
            returning article_count
            """,
            feed_id,
        )
        if row is None:
            return 0
        return int(row["article_count"])

    async def _get_pool(self) -> asyncpg.Pool:
        if not self.database_url:
            raise RepositoryUnavailableError("RSS_WORKER_DATABASE_URL is required")

        if self._pool is not None:
            return self._pool

        try:
            self._pool = await asyncpg.create_pool(
                dsn=self.database_url,
                min_size=self.min_pool_size,
                max_size=self.max_pool_size,
                command_timeout=15,
            )
            return self._pool
        except Exception as exc:  # pragma: no cover - depends on environment
            raise RepositoryUnavailableError("database unavailable") from exc

    @staticmethod
    def _article_row_to_model(row: asyncpg.Record) -> StoredArticle:
        payload: dict[str, Any] = dict(row)
        for key in ("enclosures", "images"):
            value = payload.get(key)
            if isinstance(value, str):
                try:
                    value = json.loads(value)
                except json.JSONDecodeError:
                    value = {}
            payload[key] = value if isinstance(value, dict) else {}
        return StoredArticle(**payload)
