"""Source URL validation and canonicalization."""

from __future__ import annotations

import urllib.parse

CANONICAL_WATCH_URL = "https://www.youtube.com/watch?v={video_id}"
_SHORT_LINK_HOSTS = {"youtu.be", "www.youtu.be"}


class InvalidUrlError(ValueError):
    """Raised for submissions that are not usable http(s) URLs."""


def _is_long_form_host(host: str) -> bool:
    return host == "youtube.com" or host.endswith(".youtube.com")


def extract_video_id(url: str | None) -> str | None:
    if not url or not isinstance(url, str):
        return None
    try:
        parsed = urllib.parse.urlparse(url.strip())
    except ValueError:
        return None
    host = (parsed.hostname or "").lower()
    if _is_long_form_host(host) and parsed.path == "/watch":
        values = urllib.parse.parse_qs(parsed.query).get("v")
        if values and values[0]:
            return values[0]
        return None
    if host in _SHORT_LINK_HOSTS:
        segment = parsed.path.lstrip("/").split("/")[0]
        return segment or None
    return None


def normalize_url(url: str) -> str:
    """Return the canonical watch URL for known video links.

    Long-form ``/watch?v=<id>`` links and short ``youtu.be/<id>`` links are
    rewritten to ``https://www.youtube.com/watch?v=<id>`` with every other
    query parameter dropped. Anything else, including unparseable input, is
    returned unchanged, so normalizing twice is the same as normalizing once.
    """
    video_id = extract_video_id(url)
    if not video_id:
        return url
    return CANONICAL_WATCH_URL.format(video_id=urllib.parse.quote(video_id, safe="-_"))


def require_http_url(url) -> str:
    """Validate submission input; raises ``InvalidUrlError`` before any job exists."""
    if url is None or not isinstance(url, str) or not url.strip():
        raise InvalidUrlError("url is required")
    candidate = url.strip()
    try:
        parsed = urllib.parse.urlparse(candidate)
    except ValueError as exc:
        raise InvalidUrlError(f"url could not be parsed: {candidate}") from exc
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise InvalidUrlError(f"url must be an http(s) URL: {candidate}")
    return candidate
