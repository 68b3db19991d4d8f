"""
Input sanitizing helpers for user-supplied text.

Strips markup and inline event handlers from free-text fields before they
are stored, and validates URLs submitted by affiliates.
"""

import re
from typing import Iterable, List, Optional
from urllib.parse import urlparse


MAX_INPUT_LENGTH = 1000

_SCRIPT_RE = re.compile(r"<script\b[^<]*(?:(?!</script>)<[^<]*)*</script>", re.IGNORECASE)
_TAG_RE = re.compile(r"<[^>]*>")
_EVENT_HANDLER_RE = re.compile(r"on\w+\s*=\s*[\"'][^\"']*[\"']", re.IGNORECASE)


def sanitize_input(value: Optional[str], max_length: int = MAX_INPUT_LENGTH) -> str:
    """
    Remove HTML tags, script blocks and event handler attributes.

    Returns an empty string for empty input; the result is trimmed and
    truncated to ``max_length`` characters.
    """
    if not value:
        return ""

    sanitized = _SCRIPT_RE.sub("", value)
    sanitized = _TAG_RE.sub("", sanitized)
    sanitized = _EVENT_HANDLER_RE.sub("", sanitized)
    sanitized = sanitized.strip()

    if len(sanitized) > max_length:
        sanitized = sanitized[:max_length]
    return sanitized


def sanitize_optional(value: Optional[str], max_length: int = MAX_INPUT_LENGTH) -> Optional[str]:
    """Sanitize a value, mapping empty results to None."""
    if value is None:
        return None
    return sanitize_input(value, max_length) or None


def sanitize_list(values: Optional[Iterable[str]]) -> List[str]:
    """Sanitize each entry and drop the ones that end up empty."""
    if not values:
        return []
    return [item for item in (sanitize_input(v) for v in values) if item]


def is_http_url(value: Optional[str]) -> bool:
    """Check that a value is an absolute http(s) URL."""
    if not value:
        return False
    parsed = urlparse(value.strip())
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)
