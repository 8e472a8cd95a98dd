"""
URL sanitization for log output.
"""

from __future__ import annotations

import re
from urllib.parse import unquote, urlsplit, urlunsplit

SENSITIVE_QUERY_PARAMS = frozenset({"api-key", "token", "auth", "access_key"})
MASK = "***"

_HEX_SEGMENT = re.compile(r"^[a-fA-F0-9]{16,}$")
_TOKEN_SEGMENT = re.compile(r"[A-Za-z0-9\-_]{20,}")


def _mask_query(query: str) -> str:
    parts = []
    for part in query.split("&"):
        key, sep, _ = part.partition("=")
        if sep and unquote(key) in SENSITIVE_QUERY_PARAMS:
            part = f"{key}={MASK}"
        parts.append(part)
    return "&".join(parts)


def _mask_segment(segment: str) -> str:
    if _HEX_SEGMENT.match(segment) or _TOKEN_SEGMENT.search(segment):
        return MASK
    return segment


def sanitize_url(url: str) -> str:
    """
    Mask credentials in a URL.

    Values of well-known secret query parameters are replaced, and path
    segments that look like API keys (long hex or long alphanumeric runs)
    are replaced as a whole. Empty path segments are dropped. Anything that
    is not an absolute URL is returned unchanged.
    """
    try:
        parts = urlsplit(url)
    except ValueError:
        return url

    if not parts.scheme or not parts.netloc:
        return url

    segments = [_mask_segment(s) for s in parts.path.split("/") if s]
    path = "/" + "/".join(segments)
    query = _mask_query(parts.query) if parts.query else parts.query

    return urlunsplit((parts.scheme, parts.netloc, path, query, parts.fragment))
