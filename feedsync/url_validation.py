"""URL and path validation for feed-derived values.

Image URLs and skus come straight from the supplier feed; skus also become
directory names under the export tree.
"""

import re
from typing import AbstractSet, Optional
from urllib.parse import urlparse

from feedsync.config import ALLOWED_IMAGE_HOSTS

__all__ = [
    "sanitize_url",
    "validate_image_url",
    "validate_path_component",
    "URLValidationError",
    "UnsafePathError",
]


class URLValidationError(Exception):
    """Raised when URL validation fails."""
    pass


class UnsafePathError(ValueError):
    """Raised when a feed value cannot be used as a directory name."""
    pass


# Images are only fetched over plain HTTP(S)
IMAGE_SCHEMES = ("http", "https")

SUSPICIOUS_PATTERNS = [
    r"\.\./",            # Path traversal
    r"%2e%2e",           # Encoded path traversal
    r"<script",          # XSS attempt
]


def sanitize_url(url: str) -> str:
    """Strip whitespace and control characters from a URL."""
    if not url:
        return ""

    url = url.strip()
    url = re.sub(r"[\x00-\x1f\x7f-\x9f]", "", url)
    url = url.replace("%00", "")

    return url


def validate_image_url(url: str, allowed_hosts: Optional[AbstractSet[str]] = None) -> str:
    """Validate an image URL built from the feed.

    Args:
        url: Absolute image URL
        allowed_hosts: Hosts images may come from (default: ALLOWED_IMAGE_HOSTS)

    Returns:
        Sanitized URL

    Raises:
        URLValidationError: If the URL is unusable or points elsewhere
    """
    if not url:
        raise URLValidationError("Image URL is empty")

    url = sanitize_url(url)

    try:
        parsed = urlparse(url)
    except ValueError as e:
        raise URLValidationError(f"Failed to parse image URL: {e}") from e

    scheme = parsed.scheme.lower()
    if scheme not in IMAGE_SCHEMES:
        raise URLValidationError(f"Invalid image URL scheme: {scheme}")

    host = (parsed.hostname or "").lower()
    hosts = allowed_hosts if allowed_hosts is not None else ALLOWED_IMAGE_HOSTS
    if hosts and host not in hosts:
        raise URLValidationError(f"Image host '{host}' not in allowed hosts: {sorted(hosts)}")

    if not parsed.path or parsed.path.endswith("/"):
        raise URLValidationError(f"Image URL has no file name: {url}")

    url_lower = url.lower()
    for pattern in SUSPICIOUS_PATTERNS:
        if re.search(pattern, url_lower):
            raise URLValidationError(f"URL contains suspicious pattern: {pattern}")

    return url


def validate_path_component(value: str) -> str:
    """Check that a feed value is usable as a single directory name.

    Raises:
        UnsafePathError: For empty values, separators, '.' or '..'
    """
    if not value or not value.strip():
        raise UnsafePathError("Empty path component")
    if value in (".", ".."):
        raise UnsafePathError(f"Reserved path component: {value!r}")
    if "/" in value or "\\" in value or "\x00" in value:
        raise UnsafePathError(f"Path separator in {value!r}")
    return value
