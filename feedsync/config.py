"""Configuration and constants for the feed sync.

Every value can be overridden through an environment variable of the same
name (a .env file is loaded by the CLI before this module is imported).
"""

import os
from pathlib import Path
from typing import Dict, FrozenSet, Tuple
from urllib.parse import urlparse

__all__ = [
    "FEED_URL",
    "FEED_CACHE_PATH",
    "FEED_MAX_AGE_SECONDS",
    "IMAGE_BASE_URL",
    "IMAGE_HOST_URL",
    "ALLOWED_IMAGE_HOSTS",
    "hosts_of",
    "DOWNLOAD_WORKERS",
    "REQUEST_TIMEOUT",
    "HEADERS",
    "DOWNLOAD_DIR",
    "EXPORT_DIR",
    "LOG_DIR",
    "ROOT_CATEGORY_CODE",
    "CATEGORY_PATH_SEPARATOR",
    "CATEGORY_LIST_SEPARATOR",
    "RELEASE_DATE_FORMATS",
    "PARSE_PROGRESS_INTERVAL",
]

# Supplier feed (fetched at most once per FEED_MAX_AGE_SECONDS)
FEED_URL = os.getenv(
    "FEED_URL", "http://downloads.williams-trading.com/export/wholesale/products.xml"
)

# Output paths
LOG_DIR = Path(os.getenv("LOG_DIR", "logs"))
DOWNLOAD_DIR = Path(os.getenv("DOWNLOAD_DIR", "downloads"))
EXPORT_DIR = Path(os.getenv("EXPORT_DIR", "export"))
FEED_CACHE_PATH = Path(os.getenv("FEED_CACHE_PATH", str(DOWNLOAD_DIR / "products.xml")))
FEED_MAX_AGE_SECONDS = int(os.getenv("FEED_MAX_AGE_SECONDS", "3600"))

# Feed <image> text is a path appended to this base
IMAGE_BASE_URL = os.getenv(
    "IMAGE_BASE_URL", "http://images.williams-trading.com/product_images"
)

# All image requests go to this host; only the URL path is reused
IMAGE_HOST_URL = os.getenv(
    "IMAGE_HOST_URL", "http://images.williams-trading.com.s3.amazonaws.com"
)


def hosts_of(*urls: str) -> FrozenSet[str]:
    """Lower-cased host names of the given URLs, skipping any without a host."""
    return frozenset(
        host.lower() for host in (urlparse(url).hostname for url in urls) if host
    )


# Image URLs are accepted from the base and request hosts, plus any extra
# comma-separated hosts in ALLOWED_IMAGE_HOSTS
ALLOWED_IMAGE_HOSTS: FrozenSet[str] = hosts_of(IMAGE_BASE_URL, IMAGE_HOST_URL) | frozenset(
    host.strip().lower()
    for host in os.getenv("ALLOWED_IMAGE_HOSTS", "").split(",")
    if host.strip()
)

# Download pool
DOWNLOAD_WORKERS = int(os.getenv("DOWNLOAD_WORKERS", "5"))

# Request timeout in seconds (applies to the feed and to every image)
REQUEST_TIMEOUT = float(os.getenv("REQUEST_TIMEOUT", "30"))

HEADERS: Dict[str, str] = {
    "User-Agent": os.getenv("USER_AGENT", "feedsync wholesale catalog importer"),
}

# Category tree
ROOT_CATEGORY_CODE = "0"
CATEGORY_PATH_SEPARATOR = " / "
CATEGORY_LIST_SEPARATOR = "|"

# Accepted <release_date> layouts, tried in order after ISO 8601
RELEASE_DATE_FORMATS: Tuple[str, ...] = (
    "%Y-%m-%d %H:%M:%S",
    "%m/%d/%Y",
    "%d.%m.%Y",
    "%Y/%m/%d",
    "%b %d, %Y",
    "%Y%m%d",
    "%d %b %Y",
)

# Log parser progress every N products
PARSE_PROGRESS_INTERVAL = int(os.getenv("PARSE_PROGRESS_INTERVAL", "1000"))
