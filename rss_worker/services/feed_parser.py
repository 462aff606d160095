from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any

import feedparser
import httpx

from rss_worker.schemas.articles import ParsedFeed, RawCandidate

FEED_ACCEPT_HEADER = "application/rss+xml, application/atom+xml, application/xml;q=0.9, text/xml;q=0.8, */*;q=0.5"


class FeedFetchError(Exception):
    """Raised when a feed cannot be downloaded or parsed."""


async def fetch_and_parse(
    url: str,
    *,
    client: httpx.AsyncClient | None = None,
    timeout_seconds: float = 20.0,
    user_agent: str = "rss-worker/1.0",
) -> ParsedFeed:
    headers = {"User-Agent": user_agent, "Accept": FEED_ACCEPT_HEADER}
    try:
        if client is not None:
            response = await client.get(url, headers=headers)
        else:
            async with httpx.AsyncClient(timeout=timeout_seconds, follow_redirects=True) as temp_client:
                response = await temp_client.get(url, headers=headers)
        response.raise_for_status()
    except httpx.HTTPError as exc:
        raise FeedFetchError(f"failed to fetch {url}: {exc}") from exc

    # feedparser is synchronous
    return await asyncio.to_thread(parse_feed, response.content, url=url)


def parse_feed(document: bytes | str, *, url: str = "") -> ParsedFeed:
    parsed = feedparser.parse(document)
    entries = parsed.get("entries") or []
    if parsed.get("bozo") and not entries:
        raise FeedFetchError(f"failed to parse {url or 'feed'}: {parsed.get('bozo_exception')}")

    return ParsedFeed(articles=[_entry_to_candidate(entry) for entry in entries])


def _entry_to_candidate(entry: Any) -> RawCandidate:
    content: str | None = None
    content_blocks = entry.get("content") or []
    if content_blocks:
        content = _as_text(content_blocks[0].get("value"))

    return RawCandidate(
        url=_as_text(entry.get("link")) or _as_text(entry.get("id")),
        title=_as_text(entry.get("title")),
        description=_as_text(entry.get("summary")) or _as_text(entry.get("description")),
        content=content,
        comment_url=_as_text(entry.get("comments")),
        enclosures=_enclosures(entry),
        images=_images(entry),
        publication_date=_entry_date(entry),
    )


def _enclosures(entry: Any) -> dict[str, Any]:
    enclosures: dict[str, Any] = {}
    for enclosure in entry.get("enclosures") or []:
        href = _as_text(enclosure.get("href"))
        if not href:
            continue
        enclosures[href] = {
            "type": _as_text(enclosure.get("type")),
            "length": _as_text(enclosure.get("length")),
        }
    return enclosures


def _images(entry: Any) -> dict[str, Any]:
    for thumbnail in entry.get("media_thumbnail") or []:
        image_url = _as_text(thumbnail.get("url"))
        if image_url:
            return {"featured": image_url}
    for enclosure in entry.get("enclosures") or []:
        if (_as_text(enclosure.get("type")) or "").startswith("image/") and _as_text(enclosure.get("href")):
            return {"featured": enclosure["href"].strip()}
    return {}


def _entry_date(entry: Any) -> datetime | None:
    for key in ("published_parsed", "updated_parsed"):
        value = entry.get(key)
        if not value:
            continue
        try:
            return datetime(*value[:6], tzinfo=timezone.utc)
        except (TypeError, ValueError):
            continue
    return None


def _as_text(value: Any) -> str | None:
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    return None
