from typing import Literal

from pydantic import BaseModel

IngestStatus = Literal["done", "skipped", "failed"]


class IngestJob(BaseModel):
    feed_id: str
    url: str


class IngestResult(BaseModel):
    feed_id: str
    url: str
    status: IngestStatus
    reason: str
    parsed: int = 0
    normalized: int = 0
    upserted: int = 0
    announced: int = 0
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status != "failed"
