from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

CONTENT_HASH_FIELDS = ("comment_url", "content", "description", "title")


class RawCandidate(BaseModel):
    url: str | None = None
    title: str | None = None
    description: str | None = None
    content: str | None = None
    comment_url: str | None = None
    enclosures: dict[str, Any] = Field(default_factory=dict)
    images: dict[str, Any] = Field(default_factory=dict)
    publication_date: datetime | None = None


class ParsedFeed(BaseModel):
    articles: list[RawCandidate] = Field(default_factory=list)


class ArticleCandidate(BaseModel):
    """A candidate after URL canonicalization and fingerprinting."""

    url: str
    content_hash: str
    title: str | None = None
    description: str | None = None
    content: str | None = None
    comment_url: str | None = None
    enclosures: dict[str, Any] = Field(default_factory=dict)
    images: dict[str, Any] = Field(default_factory=dict)
    publication_date: datetime | None = None


class StoredArticle(ArticleCandidate):
    id: str
    feed_id: str
    created_at: datetime
    updated_at: datetime


class FeedOut(BaseModel):
    id: str
    url: str | None = None
    title: str | None = None
    last_scraped_at: datetime | None = None
    is_parsing: bool = False
    consecutive_scrape_failures: int = 0
    article_count: int = 0
