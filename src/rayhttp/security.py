"""Redaction helpers for request traces."""

from __future__ import annotations

from typing import Mapping
from urllib.parse import urlsplit, urlunsplit


SENSITIVE_HEADERS = {
    "authorization",
    "proxy-authorization",
    "cookie",
    "x-api-key",
}


def sanitize_headers(headers: Mapping[str, str]) -> dict[str, str]:
    """Return headers with sensitive values redacted for logging."""
    redacted: dict[str, str] = {}
    for key, value in headers.items():
        if key.lower() in SENSITIVE_HEADERS:
            redacted[key] = "[REDACTED]"
        else:
            redacted[key] = value
    return redacted


def mask_proxy_url(url: str | None) -> str:
    """Hide proxy credentials, e.g. ``http://user:pw@host`` -> ``http://***@host``."""
    if not url:
        return "None"
    parts = urlsplit(url)
    if "@" not in parts.netloc:
        return url
    host = parts.netloc.rsplit("@", 1)[1]
    return urlunsplit((parts.scheme, f"***@{host}", parts.path, parts.query, parts.fragment))
