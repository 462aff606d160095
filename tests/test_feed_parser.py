from __future__ import annotations

import asyncio
import time
from datetime import datetime, timezone

import httpx
import pytest

from rss_worker.schemas.articles import ParsedFeed
from rss_worker.services.feed_parser import FeedFetchError, fetch_and_parse, parse_feed

RSS_DOCUMENT = b"""<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0"
     xmlns:content="http://purl.org/rss/1.0/modules/content/"
     xmlns:media="http://search.yahoo.com/mrss/">
  <channel>
    <title>Example News</title>
    <link>https://example.com/</link>
    <item>
      <title>First story</title>
      <link>https://example.com/news/first/</link>
      <description>Short summary</description>
      <content:encoded><![CDATA[<p>Full body</p>]]></content:encoded>
      <comments>https://example.com/news/first#comments</comments>
      <enclosure url="https://example.com/audio/first.mp3" type="audio/mpeg" length="1234" />
      <media:thumbnail url="https://example.com/img/first.jpg" />
      <pubDate>Tue, 05 Mar 2024 10:30:00 GMT</pubDate>
    </item>
    <item>
      <title>Second story</title>
      <link>https://example.com/news/second</link>
    </item>
  </channel>
</rss>
"""


def test_parse_feed_maps_entries_to_raw_candidates() -> None:
    parsed = parse_feed(RSS_DOCUMENT, url="https://example.com/rss")

    assert len(parsed.articles) == 2
    first, second = parsed.articles
    assert first.url == "https://example.com/news/first/"
    assert first.title == "First story"
    assert first.description == "Short summary"
    assert first.content == "<p>Full body</p>"
    assert first.comment_url == "https://example.com/news/first#comments"
    assert first.enclosures == {"https://example.com/audio/first.mp3": {"type": "audio/mpeg", "length": "1234"}}
    assert first.images == {"featured": "https://example.com/img/first.jpg"}
    assert first.publication_date == datetime(2024, 3, 5, 10, 30, tzinfo=timezone.utc)
    assert second.publication_date is None
    assert second.enclosures == {}


def test_parse_feed_rejects_unparseable_documents() -> None:
    with pytest.raises(FeedFetchError):
        parse_feed(b"<html><body>not a feed", url="https://example.com/broken")


def test_fetch_and_parse_uses_client_and_headers() -> None:
    seen: dict[str, str] = {}

    async def handler(request: httpx.Request) -> httpx.Response:
        seen["user_agent"] = request.headers["User-Agent"]
        return httpx.Response(status_code=200, content=RSS_DOCUMENT, request=request)

    async def run() -> ParsedFeed:
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            return await fetch_and_parse("https://example.com/rss", client=client, user_agent="test-agent/2")

    parsed = asyncio.run(run())

    assert len(parsed.articles) == 2
    assert seen["user_agent"] == "test-agent/2"


def test_fetch_and_parse_wraps_http_errors() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code=503, request=request)

    async def run() -> ParsedFeed:
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            return await fetch_and_parse("https://example.com/rss", client=client)

    with pytest.raises(FeedFetchError):
        asyncio.run(run())


def test_fetch_and_parse_wraps_network_errors() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    async def run() -> ParsedFeed:
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            return await fetch_and_parse("https://example.com/rss", client=client)

    with pytest.raises(FeedFetchError):
        asyncio.run(run())


def _large_rss_document(item_count: int) -> bytes:
    items = "".join(
        f"<item><title>Story {index}</title><link>https://example.com/news/{index}</link>"
        f"<description>Summary {index}</description></item>"
        for index in range(item_count)
    )
    return f'<?xml version="1.0"?><rss version="2.0"><channel><title>Big</title>{items}</channel></rss>'.encode()


def test_fetch_and_parse_keeps_event_loop_responsive_for_large_feeds() -> None:
    document = _large_rss_document(5000)

    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code=200, content=document, request=request)

    async def run() -> tuple[ParsedFeed, float]:
        gaps: list[float] = []
        stop = asyncio.Event()

        async def ticker() -> None:
            last = time.perf_counter()
            while not stop.is_set():
                await asyncio.sleep(0.005)
                now = time.perf_counter()
                gaps.append(now - last)
                last = now

        ticker_task = asyncio.create_task(ticker())
        try:
            async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
                parsed = await fetch_and_parse("https://example.com/rss", client=client)
        finally:
            stop.set()
            await ticker_task
        return parsed, max(gaps)

    parsed, largest_gap = asyncio.run(run())

    assert len(parsed.articles) == 5000
    assert largest_gap < 0.5
