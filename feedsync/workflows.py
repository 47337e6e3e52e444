"""End-to-end feed sync workflow.

Runs the stages in order, logging progress for each one:

    fetch feed -> parse feed -> write tables -> write descriptions -> sync images

Any error inside a stage other than image downloads is fatal and is
re-raised as PipelineError naming the stage.
"""

import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Optional

from feedsync.config import (
    DOWNLOAD_DIR,
    DOWNLOAD_WORKERS,
    EXPORT_DIR,
    FEED_CACHE_PATH,
    FEED_MAX_AGE_SECONDS,
    FEED_URL,
)
from feedsync.csv_utils import export_catalog, write_descriptions, write_image_manifest
from feedsync.downloader import DownloadReport, TransportFactory, sync_images
from feedsync.feed_parser import parse_feed
from feedsync.fetcher import HttpTransport, fetch_feed
from feedsync.logging_config import get_logger, log_sync_event
from feedsync.models import FeedCatalog, ManifestEntry
from feedsync.shutdown import shutdown_requested

__all__ = [
    "PipelineError",
    "PipelineOptions",
    "PipelineResult",
    "ensure_directories",
    "pipeline_stage",
    "run_pipeline",
]

logger = get_logger("workflows")


class PipelineError(Exception):
    """A fatal error, tagged with the stage that raised it."""

    def __init__(self, stage: str, cause: BaseException):
        self.stage = stage
        self.cause = cause
        super().__init__(f"Stage '{stage}' failed: {cause}")


@dataclass
class PipelineOptions:
    export_dir: Path = EXPORT_DIR
    download_dir: Path = DOWNLOAD_DIR
    feed_url: str = FEED_URL
    feed_cache_path: Path = FEED_CACHE_PATH
    feed_max_age: float = FEED_MAX_AGE_SECONDS
    # Parse this file instead of fetching the feed
    feed_file: Optional[Path] = None
    refresh_feed: bool = False
    workers: int = DOWNLOAD_WORKERS
    skip_images: bool = False

    @property
    def images_dir(self) -> Path:
        return Path(self.export_dir) / "images"


@dataclass
class PipelineResult:
    catalog: FeedCatalog
    table_counts: Dict[str, int] = field(default_factory=dict)
    descriptions_written: int = 0
    manifest: List[ManifestEntry] = field(default_factory=list)
    report: Optional[DownloadReport] = None


def ensure_directories(options: PipelineOptions) -> None:
    """Create the download and export directories if missing."""
    for directory in (options.download_dir, options.export_dir):
        Path(directory).mkdir(parents=True, exist_ok=True)


@contextmanager
def pipeline_stage(name: str) -> Iterator[None]:
    """Log a stage and turn its failures into PipelineError."""
    logger.info(f"Begin {name} ...")
    log_sync_event("stage_start", {"stage": name}, level=logging.DEBUG)
    started = time.monotonic()
    try:
        yield
    except PipelineError:
        raise
    except Exception as e:
        log_sync_event("stage_failed", {
            "stage": name,
            "error": str(e),
            "error_type": type(e).__name__,
        }, level=logging.DEBUG)
        raise PipelineError(name, e) from e

    elapsed = time.monotonic() - started
    logger.info(f"{name} complete ({elapsed:.1f}s)")
    log_sync_event("stage_complete", {"stage": name, "seconds": round(elapsed, 2)}, level=logging.DEBUG)


def run_pipeline(
    options: Optional[PipelineOptions] = None,
    feed_transport: Optional[HttpTransport] = None,
    image_transport_factory: Optional[TransportFactory] = None,
    should_stop: Callable[[], bool] = shutdown_requested,
) -> PipelineResult:
    """Fetch, parse and export the feed, then mirror its images.

    Args:
        options: Paths and switches (default: PipelineOptions())
        feed_transport: Optional transport for the feed download
        image_transport_factory: Optional per-worker transport factory for images
        should_stop: Cancellation check passed to the download workers

    Returns:
        PipelineResult; image download failures are reported in
        ``result.report`` rather than raised

    Raises:
        PipelineError: On any fatal error
    """
    options = options or PipelineOptions()

    with pipeline_stage("prepare directories"):
        ensure_directories(options)

    if options.feed_file is not None:
        feed_path = Path(options.feed_file)
        logger.info(f"Using local feed file {feed_path}")
    else:
        with pipeline_stage("fetch feed"):
            feed_path = fetch_feed(
                url=options.feed_url,
                cache_path=options.feed_cache_path,
                max_age=options.feed_max_age,
                force=options.refresh_feed,
                transport=feed_transport,
            )

    with pipeline_stage("parse feed"):
        catalog = parse_feed(feed_path)

    result = PipelineResult(catalog=catalog)

    with pipeline_stage("write tables"):
        result.table_counts = export_catalog(catalog, options.export_dir)

    with pipeline_stage("write descriptions"):
        result.descriptions_written = write_descriptions(catalog.descriptions, options.export_dir)

    if options.skip_images:
        logger.info("Skipping image sync")
        return result

    with pipeline_stage("sync images"):
        result.manifest, result.report = sync_images(
            catalog,
            options.images_dir,
            num_workers=options.workers,
            transport_factory=image_transport_factory,
            should_stop=should_stop,
        )

    with pipeline_stage("write image manifest"):
        write_image_manifest(result.manifest, Path(options.export_dir) / "product_images.csv")

    return result
