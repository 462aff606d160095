from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import httpx

from rss_worker.schemas.articles import FeedOut


class StreamClient:
    """Activity stream API: per-feed activity timelines and collection fan-in."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 10.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.headers = {"Authorization": f"Bearer {api_key}"}
        self.timeout_seconds = timeout_seconds
        self._client = client

    async def add_activities(self, namespace: str, feed_id: str, activities: list[dict[str, Any]]) -> None:
        async with self._session() as client:
            response = await client.post(
                f"{self.base_url}/feeds/{namespace}/{feed_id}/activities",
                json={"activities": activities},
                headers=self.headers,
            )
            response.raise_for_status()

    async def send_feed_to_collections(self, feed: FeedOut) -> None:
        async with self._session() as client:
            response = await client.post(
                f"{self.base_url}/collections/feeds/{feed.id}",
                json={"feed_id": feed.id, "url": feed.url, "title": feed.title},
                headers=self.headers,
            )
            response.raise_for_status()

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._client is not None:
            yield self._client
            return
        async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
            yield client
