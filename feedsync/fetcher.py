"""HTTP access to the supplier: the feed download and the image host."""

import os
import time
from pathlib import Path
from typing import Optional
from urllib.parse import urlsplit

import requests  # type: ignore[import-untyped]

from feedsync.config import (
    FEED_CACHE_PATH,
    FEED_MAX_AGE_SECONDS,
    FEED_URL,
    HEADERS,
    REQUEST_TIMEOUT,
)
from feedsync.logging_config import get_logger, log_sync_event

__all__ = [
    "FeedFetchError",
    "HttpTransport",
    "create_session",
    "is_cache_fresh",
    "fetch_feed",
]

logger = get_logger("fetcher")

CHUNK_SIZE = 64 * 1024


class FeedFetchError(Exception):
    """The feed could not be downloaded. Always fatal for the run."""
    pass


def create_session() -> requests.Session:
    """Create a requests Session with the supplier headers.

    One session keeps the connection to a host alive across requests.
    """
    session = requests.Session()
    session.headers.update(HEADERS)
    session.headers.setdefault("Accept-Encoding", "gzip, deflate")
    return session


class HttpTransport:
    """GET-by-path against a single host.

    Args:
        base_url: Scheme and host (optionally a path prefix) for every request
        session: Optional session; a new one is created and owned otherwise
        timeout: Per-request timeout in seconds
    """

    def __init__(
        self,
        base_url: str,
        session: Optional[requests.Session] = None,
        timeout: float = REQUEST_TIMEOUT,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._owns_session = session is None
        self.session = session or create_session()

    def url_for(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    def fetch(self, path: str) -> bytes:
        """Return the response body for ``path``.

        Raises:
            requests.RequestException: On connection errors, timeouts and
                non-2xx responses
        """
        resp = self.session.get(self.url_for(path), timeout=self.timeout)
        resp.raise_for_status()
        return resp.content

    def stream_to_file(self, path: str, destination: Path) -> int:
        """Stream ``path`` into ``destination`` atomically, returning bytes written."""
        partial = destination.with_name(destination.name + ".part")
        written = 0
        try:
            with self.session.get(self.url_for(path), timeout=self.timeout, stream=True) as resp:
                resp.raise_for_status()
                with open(partial, "wb") as f:
                    for chunk in resp.iter_content(chunk_size=CHUNK_SIZE):
                        f.write(chunk)
                        written += len(chunk)
            os.replace(partial, destination)
        finally:
            if partial.exists():
                partial.unlink()
        return written

    def close(self) -> None:
        if self._owns_session:
            self.session.close()

    def __enter__(self) -> "HttpTransport":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


def is_cache_fresh(
    path: Path,
    max_age: float = FEED_MAX_AGE_SECONDS,
    now: Optional[float] = None,
) -> bool:
    """True if ``path`` exists and was modified no more than ``max_age`` seconds ago."""
    if not path.exists():
        return False
    current = time.time() if now is None else now
    return current <= path.stat().st_mtime + max_age


def fetch_feed(
    url: str = FEED_URL,
    cache_path: Path = FEED_CACHE_PATH,
    max_age: float = FEED_MAX_AGE_SECONDS,
    force: bool = False,
    transport: Optional[HttpTransport] = None,
) -> Path:
    """Return a local copy of the feed, downloading it only when stale.

    Args:
        url: Feed URL
        cache_path: Where the feed is cached between runs
        max_age: Reuse the cache if younger than this many seconds
        force: Download even if the cache is fresh
        transport: Optional transport (default: a new HttpTransport for the feed host)

    Returns:
        Path to the cached feed

    Raises:
        FeedFetchError: If the download fails
    """
    cache_path = Path(cache_path)

    if not force and is_cache_fresh(cache_path, max_age):
        logger.info(f"Using cached feed {cache_path}")
        log_sync_event("feed_cached", {"path": str(cache_path)})
        return cache_path

    logger.info(f"Feed cache outdated, fetching {url}")
    cache_path.parent.mkdir(parents=True, exist_ok=True)

    parts = urlsplit(url)
    own_transport = transport is None
    if transport is None:
        transport = HttpTransport(f"{parts.scheme}://{parts.netloc}")

    path = f"{parts.path}?{parts.query}" if parts.query else parts.path

    started = time.monotonic()
    try:
        size = transport.stream_to_file(path, cache_path)
    except requests.exceptions.RequestException as e:
        logger.error(f"Failed to fetch feed {url}: {e}")
        raise FeedFetchError(
            f"Failed to fetch feed {url}: {e}\n"
            f"Please check your internet connection and verify the URL is accessible."
        ) from e
    except OSError as e:
        logger.error(f"Failed to write feed to {cache_path}: {e}")
        raise FeedFetchError(f"Failed to write feed to {cache_path}: {e}") from e
    finally:
        if own_transport:
            transport.close()

    elapsed = time.monotonic() - started
    logger.info(f"Downloaded feed ({size} bytes) in {elapsed:.1f}s")
    log_sync_event("feed_downloaded", {"url": url, "bytes": size, "seconds": round(elapsed, 2)})
    return cache_path
