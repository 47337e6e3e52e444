"""Image synchronization.

Every (sku, image URL) pair maps to one canonical file under
``<images_dir>/<sku>/``. Files already on disk are never requested again;
the missing ones go through a single shared queue drained by a fixed
number of worker threads, each with its own connection to the image host.
"""

import hashlib
import logging
import os
import posixpath
import queue
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import AbstractSet, Any, Callable, Dict, Iterable, List, Optional, Set, Tuple

from feedsync.config import DOWNLOAD_WORKERS, IMAGE_HOST_URL
from feedsync.fetcher import HttpTransport
from feedsync.logging_config import get_logger, log_sync_event
from feedsync.models import DownloadTask, FeedCatalog, ManifestEntry
from feedsync.shutdown import shutdown_requested
from feedsync.url_validation import (
    URLValidationError,
    validate_image_url,
    validate_path_component,
)

__all__ = [
    "canonical_filename",
    "DownloadPlan",
    "DownloadReport",
    "plan_downloads",
    "ImageDownloader",
    "image_transport",
    "sync_images",
]

logger = get_logger("downloader")

# Log a progress line every N completed downloads
PROGRESS_EVERY = 100

TransportFactory = Callable[[], Any]


def canonical_filename(sku: str, original_filename: str) -> str:
    """Local file name for an image of a product.

    md5 of ``"<sku>::<original filename>"`` plus the original extension, so
    the same product image always lands on the same path across runs.
    """
    key = f"{sku}::{original_filename}".encode("utf-8")
    digest = hashlib.md5(key, usedforsecurity=False).hexdigest()
    return digest + posixpath.splitext(original_filename)[1]


def image_transport() -> HttpTransport:
    """Default transport: a fresh session against the image host."""
    return HttpTransport(IMAGE_HOST_URL)


@dataclass
class DownloadPlan:
    manifest: List[ManifestEntry] = field(default_factory=list)
    tasks: List[DownloadTask] = field(default_factory=list)
    present: int = 0
    # (sku, url) pairs whose URL failed validation
    rejected: List[Tuple[str, str]] = field(default_factory=list)


@dataclass
class DownloadReport:
    """Outcome of one pool run, keyed by destination path.

    failed maps destination -> error text; cancelled maps destination -> task.
    rejected lists the (sku, url) pairs that were never queued because the
    URL did not validate.
    """

    downloaded: List[DownloadTask] = field(default_factory=list)
    failed: Dict[Path, str] = field(default_factory=dict)
    cancelled: Dict[Path, DownloadTask] = field(default_factory=dict)
    rejected: List[Tuple[str, str]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed and not self.cancelled and not self.rejected

    def status_for(self, destination: Path) -> str:
        if destination in self.failed:
            return "failed"
        if destination in self.cancelled:
            return "cancelled"
        return "downloaded"


def plan_downloads(
    pairs: Iterable[Tuple[str, str]],
    images_dir: Path,
    allowed_hosts: Optional[AbstractSet[str]] = None,
) -> DownloadPlan:
    """Work out which images are missing on disk.

    Args:
        pairs: (sku, image URL) in feed order
        images_dir: Root of the per-sku image directories
        allowed_hosts: Hosts images may come from (default: ALLOWED_IMAGE_HOSTS)

    Returns:
        DownloadPlan with one manifest entry per accepted pair and one task
        per missing destination

    Raises:
        UnsafePathError: If a sku cannot be used as a directory name
    """
    images_dir = Path(images_dir)
    plan = DownloadPlan()
    queued: Set[Path] = set()

    for sku, url in pairs:
        try:
            url = validate_image_url(url, allowed_hosts)
        except URLValidationError as e:
            logger.error(f"Rejected image for {sku}: {e}")
            plan.rejected.append((sku, url))
            continue

        original = DownloadTask.original_filename_of(url)
        filename = canonical_filename(sku, original)
        destination = images_dir / validate_path_component(sku) / filename

        if destination.exists():
            plan.present += 1
            status = "present"
        else:
            status = "pending"
            if destination not in queued:
                queued.add(destination)
                plan.tasks.append(DownloadTask(
                    sku=sku,
                    url=url,
                    destination=destination,
                    original_filename=original,
                ))

        plan.manifest.append(ManifestEntry(
            sku=sku,
            filename=filename,
            original_filename=original,
            status=status,
        ))

    return plan


def _write_atomic(destination: Path, body: bytes) -> None:
    partial = destination.with_name(destination.name + ".part")
    try:
        with open(partial, "wb") as f:
            f.write(body)
        os.replace(partial, destination)
    finally:
        if partial.exists():
            partial.unlink()


class ImageDownloader:
    """Fixed-size worker pool over one shared FIFO queue.

    Usage:
        downloader = ImageDownloader(num_workers=5)
        for task in tasks:
            downloader.submit(task)
        report = downloader.join()  # blocks until every worker has exited
    """

    def __init__(
        self,
        num_workers: int = DOWNLOAD_WORKERS,
        transport_factory: Optional[TransportFactory] = None,
        should_stop: Callable[[], bool] = shutdown_requested,
    ):
        if num_workers < 1:
            raise ValueError(f"num_workers must be at least 1, got {num_workers}")
        self.num_workers = num_workers
        self._transport_factory = transport_factory or image_transport
        self._should_stop = should_stop
        self._queue: "queue.Queue[DownloadTask]" = queue.Queue()
        self._lock = threading.Lock()
        self._report = DownloadReport()
        self._open_errors: List[str] = []

    def submit(self, task: DownloadTask) -> None:
        self._queue.put(task)

    def pending(self) -> int:
        return self._queue.qsize()

    def join(self) -> DownloadReport:
        """Run the workers until the queue is drained or the run is cancelled."""
        workers = [
            threading.Thread(target=self._worker, name=f"image-worker-{i + 1}")
            for i in range(self.num_workers)
        ]
        for t in workers:
            t.start()
        for t in workers:
            t.join()

        # Workers only leave tasks behind when cancelled or when none of
        # them could open a transport
        cancelled = self._should_stop()
        while True:
            try:
                task = self._queue.get_nowait()
            except queue.Empty:
                break
            if cancelled:
                self._report.cancelled[task.destination] = task
            else:
                reason = self._open_errors[0] if self._open_errors else "no worker available"
                self._report.failed[task.destination] = f"Could not open image transport: {reason}"

        if self._report.cancelled:
            logger.warning(f"Cancelled with {len(self._report.cancelled)} downloads pending")
        return self._report

    def _worker(self) -> None:
        try:
            transport = self._transport_factory()
        except Exception as e:
            logger.error(f"Could not open image transport: {e}")
            with self._lock:
                self._open_errors.append(str(e))
            return

        try:
            while not self._should_stop():
                try:
                    task = self._queue.get_nowait()
                except queue.Empty:
                    break
                self._download(transport, task)
        finally:
            close = getattr(transport, "close", None)
            if close is not None:
                close()

    def _download(self, transport: Any, task: DownloadTask) -> None:
        try:
            body = transport.fetch(task.request_path)
            _write_atomic(task.destination, body)
        except Exception as e:
            logger.error(f"  ERROR downloading {task.url} for {task.sku}: {e}")
            log_sync_event("image_failed", {
                "sku": task.sku,
                "url": task.url,
                "destination": str(task.destination),
                "error": str(e),
            }, level=logging.WARNING)
            with self._lock:
                self._report.failed[task.destination] = str(e)
            return

        with self._lock:
            self._report.downloaded.append(task)
            done = len(self._report.downloaded)
        if done % PROGRESS_EVERY == 0:
            logger.info(f"    {done} images downloaded, {self.pending()} queued")


def sync_images(
    catalog: FeedCatalog,
    images_dir: Path,
    num_workers: int = DOWNLOAD_WORKERS,
    transport_factory: Optional[TransportFactory] = None,
    should_stop: Callable[[], bool] = shutdown_requested,
    allowed_hosts: Optional[AbstractSet[str]] = None,
) -> Tuple[List[ManifestEntry], DownloadReport]:
    """Mirror every image of the catalog into ``images_dir``.

    Creates ``images_dir/<sku>`` for each product first, skips images that
    already exist, downloads the rest with ``num_workers`` threads and
    blocks until they finish. Images whose URL does not validate are listed
    in ``report.rejected`` and get no manifest entry.

    Returns:
        (manifest, report) where each manifest entry carries its final status
    """
    images_dir = Path(images_dir)

    for sku in dict.fromkeys(p.sku for p in catalog.products):
        (images_dir / validate_path_component(sku)).mkdir(parents=True, exist_ok=True)

    pairs = list(catalog.image_pairs())
    plan = plan_downloads(pairs, images_dir, allowed_hosts)
    logger.info(
        f"{len(pairs)} images referenced: {plan.present} present, "
        f"{len(plan.tasks)} to download, {len(plan.rejected)} rejected"
    )

    downloader = ImageDownloader(num_workers, transport_factory, should_stop)
    for task in plan.tasks:
        downloader.submit(task)

    started = time.monotonic()
    report = downloader.join()
    report.rejected = list(plan.rejected)
    elapsed = time.monotonic() - started

    log_sync_event("images_synced", {
        "message": f"Downloaded {len(report.downloaded)} images in {elapsed:.1f}s "
                   f"({len(report.failed)} failed, {len(report.cancelled)} cancelled)",
        "downloaded": len(report.downloaded),
        "failed": len(report.failed),
        "cancelled": len(report.cancelled),
        "present": plan.present,
        "rejected": len(plan.rejected),
    })

    manifest = [
        entry if entry.status != "pending" else ManifestEntry(
            sku=entry.sku,
            filename=entry.filename,
            original_filename=entry.original_filename,
            status=report.status_for(images_dir / entry.sku / entry.filename),
        )
        for entry in plan.manifest
    ]
    return manifest, report
