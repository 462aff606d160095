from __future__ import annotations

from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

TRACKING_KEYS = {"fbclid", "gclid"}
SUPPORTED_SCHEMES = {"http", "https"}
DEFAULT_PORTS = {"http": 80, "https": 443}


class NormalizationError(ValueError):
    """Raised when a URL cannot be canonicalized."""


def normalize_url(raw_url: str) -> str:
    """Canonical article URL used as the per-feed identity."""
    if not isinstance(raw_url, str) or not raw_url.strip():
        raise NormalizationError("url is empty")

    candidate = raw_url.strip()
    if candidate.startswith("//"):
        candidate = f"http:{candidate}"
    elif "://" not in candidate:
        candidate = f"http://{candidate}"

    try:
        parsed = urlparse(candidate)
    except ValueError as exc:
        raise NormalizationError(f"malformed url: {raw_url!r}") from exc
    scheme = parsed.scheme.lower()
    if scheme not in SUPPORTED_SCHEMES:
        raise NormalizationError(f"unsupported scheme: {parsed.scheme!r}")

    host = (parsed.hostname or "").rstrip(".")
    if not host:
        raise NormalizationError(f"url has no host: {raw_url!r}")
    try:
        port = parsed.port
    except ValueError as exc:
        raise NormalizationError(f"invalid port in url: {raw_url!r}") from exc

    netloc = host
    if ":" in host:
        netloc = f"[{host}]"
    if port is not None and port != DEFAULT_PORTS[scheme]:
        netloc = f"{netloc}:{port}"
    if parsed.username:
        userinfo = parsed.username if parsed.password is None else f"{parsed.username}:{parsed.password}"
        netloc = f"{userinfo}@{netloc}"

    path = parsed.path or "/"
    if path != "/" and path.endswith("/"):
        path = path.rstrip("/") or "/"

    filtered_query_pairs = [
        (key, value)
        for key, value in parse_qsl(parsed.query, keep_blank_values=True)
        if not _is_tracking_param(key.lower())
    ]
    filtered_query_pairs.sort(key=lambda pair: pair[0])
    query = urlencode(filtered_query_pairs, doseq=True)

    if path == "/" and not query:
        return urlunparse((scheme, netloc, "", "", "", ""))
    return urlunparse((scheme, netloc, path, parsed.params, query, ""))


def _is_tracking_param(key: str) -> bool:
    return key.startswith("utm_") or key in TRACKING_KEYS
