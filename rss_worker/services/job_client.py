from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import httpx


class JobClient:
    """Client for the job queue API: rss intake and enrichment scheduling."""

    def __init__(
        self,
        base_url: str,
        module_id: str,
        api_key: str,
        *,
        client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 10.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.headers = {
            "X-Module-Id": module_id,
            "X-API-Key": api_key,
        }
        self.timeout_seconds = timeout_seconds
        self._client = client

    async def get_jobs(self, limit: int = 10, *, kind: str | None = None) -> list[dict[str, Any]]:
        params: dict[str, Any] = {"limit": limit}
        if kind:
            params["kind"] = kind
        async with self._session() as client:
            response = await client.get(f"{self.base_url}/jobs", params=params, headers=self.headers)
            response.raise_for_status()
            return response.json()

    async def claim_job(self, job_id: str, lease_seconds: int = 120) -> dict[str, Any]:
        async with self._session() as client:
            response = await client.post(
                f"{self.base_url}/jobs/{job_id}/claim",
                json={"lease_seconds": lease_seconds},
                headers=self.headers,
            )
            response.raise_for_status()
            return response.json()

    async def submit_result(
        self,
        job_id: str,
        *,
        status: str,
        result_json: dict[str, Any] | None = None,
        error_json: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        payload = {
            "status": status,
            "result_json": result_json,
            "error_json": error_json,
        }
        async with self._session() as client:
            response = await client.post(f"{self.base_url}/jobs/{job_id}/result", json=payload, headers=self.headers)
            response.raise_for_status()
            return response.json()

    async def enqueue_job(
        self,
        kind: str,
        inputs: dict[str, Any],
        *,
        remove_on_complete: bool = False,
        remove_on_fail: bool = False,
    ) -> str:
        payload = {
            "kind": kind,
            "inputs_json": inputs,
            "remove_on_complete": remove_on_complete,
            "remove_on_fail": remove_on_fail,
        }
        async with self._session() as client:
            response = await client.post(f"{self.base_url}/jobs", json=payload, headers=self.headers)
            response.raise_for_status()
            return str(response.json().get("id", ""))

    async def reap_expired_jobs(self, limit: int = 100) -> int:
        async with self._session() as client:
            response = await client.post(
                f"{self.base_url}/jobs/reap-expired",
                params={"limit": limit},
                headers=self.headers,
            )
            response.raise_for_status()
            payload = response.json()
            return int(payload.get("requeued", 0))

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._client is not None:
            yield self._client
            return
        async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
            yield client
