from __future__ import annotations

import re
from typing import Any
from urllib.parse import urlsplit

SENSITIVE_KEYS = {
    "webhook_url",
    "apikey",
    "authorization",
    "x-cron-key",
}

_URL_PATTERN = re.compile(r"https?://[^\s'\"]+")


def redact_url(url: str) -> str:
    """Keep scheme and host of a webhook URL; the path carries the Teams secret."""
    parts = urlsplit(url)
    if not parts.scheme or not parts.netloc:
        return "<invalid-url>"
    return f"{parts.scheme}://{parts.netloc}/..."


def redact_text(text: str) -> str:
    return _URL_PATTERN.sub(lambda match: redact_url(match.group(0)), text)


def redact_sensitive(value: Any) -> Any:
    if isinstance(value, dict):
        sanitized: dict[str, Any] = {}
        for key, item in value.items():
            if isinstance(key, str) and key.lower() in SENSITIVE_KEYS:
                continue
            sanitized[key] = redact_sensitive(item)
        return sanitized
    if isinstance(value, list):
        return [redact_sensitive(item) for item in value]
    if isinstance(value, str):
        return redact_text(value)
    return value
