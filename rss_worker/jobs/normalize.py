from __future__ import annotations

import hashlib
import json
import logging
from collections.abc import Iterable, Mapping

from rss_worker.core.urls import NormalizationError, normalize_url
from rss_worker.schemas.articles import CONTENT_HASH_FIELDS, ArticleCandidate, RawCandidate

logger = logging.getLogger(__name__)


def compute_content_hash(fields: Mapping[str, str | None]) -> str:
    """Fingerprint over the comparable content fields only; URL and dates are excluded."""
    payload = {field: fields.get(field) for field in CONTENT_HASH_FIELDS}
    encoded = json.dumps(payload, sort_keys=True, ensure_ascii=False, separators=(",", ":"))
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()


def normalize_candidate(raw: RawCandidate) -> ArticleCandidate:
    if raw.url is None:
        raise NormalizationError("candidate has no url")
    url = normalize_url(raw.url)
    fields = raw.model_dump(exclude={"url"})
    return ArticleCandidate(
        **fields,
        url=url,
        content_hash=compute_content_hash(fields),
    )


def normalize_candidates(raws: Iterable[RawCandidate], *, feed_id: str = "") -> list[ArticleCandidate]:
    normalized: list[ArticleCandidate] = []
    for raw in raws:
        try:
            normalized.append(normalize_candidate(raw))
        except NormalizationError as exc:
            logger.warning("dropping article feed=%s url=%r: %s", feed_id, raw.url, exc)
    return normalized
