"""Tests for image planning and the download worker pool."""

import hashlib
import os
import subprocess
import sys
from datetime import date
from pathlib import Path

import pytest

from feedsync.config import IMAGE_BASE_URL, IMAGE_HOST_URL, hosts_of
from feedsync.downloader import (
    ImageDownloader,
    canonical_filename,
    plan_downloads,
    sync_images,
)
from feedsync.models import DownloadTask, FeedCatalog, Product
from feedsync.url_validation import UnsafePathError


def _url(path: str) -> str:
    return IMAGE_BASE_URL + path


def _task(images_dir: Path, sku: str, path: str) -> DownloadTask:
    url = _url(path)
    original = DownloadTask.original_filename_of(url)
    sku_dir = images_dir / sku
    sku_dir.mkdir(parents=True, exist_ok=True)
    return DownloadTask(
        sku=sku,
        url=url,
        destination=sku_dir / canonical_filename(sku, original),
        original_filename=original,
    )


class TestCanonicalFilename:
    """Local names are md5("<sku>::<original>") plus the original extension."""

    def test_known_value(self):
        expected = hashlib.md5(b"AB123::AB123.jpg").hexdigest() + ".jpg"
        assert canonical_filename("AB123", "AB123.jpg") == expected

    def test_pure(self):
        assert canonical_filename("X", "a.png") == canonical_filename("X", "a.png")

    def test_keeps_only_last_extension(self):
        assert canonical_filename("X", "photo.large.jpeg").endswith(".jpeg")

    def test_no_extension(self):
        name = canonical_filename("X", "README")
        assert len(name) == 32
        assert "." not in name

    def test_sku_is_part_of_the_key(self):
        assert canonical_filename("A", "img.jpg") != canonical_filename("B", "img.jpg")

    def test_no_collisions_across_many_inputs(self):
        pairs = {(f"SKU{i % 97}", f"img_{i}.jpg") for i in range(10000)}
        names = {canonical_filename(sku, original) for sku, original in pairs}
        assert len(names) == len(pairs)


class TestPlanDownloads:
    """Planning compares the feed against what is already on disk."""

    def test_missing_file_becomes_a_task(self, tmp_path):
        plan = plan_downloads([("AB123", _url("/A/AB123.jpg"))], tmp_path)

        assert len(plan.tasks) == 1
        task = plan.tasks[0]
        assert task.original_filename == "AB123.jpg"
        assert task.destination == tmp_path / "AB123" / canonical_filename("AB123", "AB123.jpg")
        assert task.request_path == "/product_images/A/AB123.jpg"
        assert plan.manifest[0].status == "pending"

    def test_existing_file_is_not_requested(self, tmp_path):
        existing = tmp_path / "AB123" / canonical_filename("AB123", "AB123.jpg")
        existing.parent.mkdir(parents=True)
        existing.write_bytes(b"old")

        plan = plan_downloads([("AB123", _url("/A/AB123.jpg"))], tmp_path)

        assert plan.tasks == []
        assert plan.present == 1
        assert plan.manifest[0].status == "present"

    def test_repeated_pair_downloads_once(self, tmp_path):
        pair = ("AB123", _url("/A/AB123.jpg"))
        plan = plan_downloads([pair, pair], tmp_path)

        assert len(plan.tasks) == 1
        assert len(plan.manifest) == 2

    def test_foreign_host_rejected(self, tmp_path):
        plan = plan_downloads([("AB123", "http://evil.example.com/x.jpg")], tmp_path)

        assert plan.tasks == []
        assert plan.manifest == []
        assert plan.rejected == [("AB123", "http://evil.example.com/x.jpg")]

    def test_unsafe_sku(self, tmp_path):
        with pytest.raises(UnsafePathError):
            plan_downloads([("../etc", _url("/A/x.jpg"))], tmp_path)


class TestImageDownloader:
    """Bounded pool: every task is fetched once, failures stay isolated."""

    def test_rejects_zero_workers(self):
        with pytest.raises(ValueError):
            ImageDownloader(num_workers=0)

    def test_each_task_fetched_exactly_once(self, tmp_path, image_host):
        tasks = [_task(tmp_path, f"S{i % 7}", f"/img/{i}.jpg") for i in range(50)]
        downloader = ImageDownloader(4, image_host.transport, should_stop=lambda: False)
        for task in tasks:
            downloader.submit(task)

        report = downloader.join()

        assert sorted(image_host.requests) == sorted(t.request_path for t in tasks)
        assert len(report.downloaded) == 50
        assert report.ok
        for task in tasks:
            assert task.destination.read_bytes() == f"image:{task.request_path}".encode()

    def test_one_transport_per_worker(self, tmp_path, image_host):
        downloader = ImageDownloader(3, image_host.transport, should_stop=lambda: False)
        for i in range(10):
            downloader.submit(_task(tmp_path, "S", f"/img/{i}.jpg"))

        downloader.join()

        assert image_host.opened == 3
        assert image_host.closed == 3

    def test_failure_does_not_stop_other_downloads(self, tmp_path, image_host):
        good = _task(tmp_path, "S", "/img/good.jpg")
        bad = _task(tmp_path, "S", "/img/bad.jpg")
        image_host.failing.add(bad.request_path)

        downloader = ImageDownloader(1, image_host.transport, should_stop=lambda: False)
        downloader.submit(bad)
        downloader.submit(good)
        report = downloader.join()

        assert report.downloaded == [good]
        assert list(report.failed) == [bad.destination]
        assert "404" in report.failed[bad.destination]
        assert good.destination.exists()
        assert not bad.destination.exists()
        assert not bad.destination.with_name(bad.destination.name + ".part").exists()
        assert report.status_for(bad.destination) == "failed"

    def test_cancellation_leaves_remaining_tasks_queued(self, tmp_path, image_host):
        tasks = [_task(tmp_path, "S", f"/img/{i}.jpg") for i in range(5)]
        downloader = ImageDownloader(
            1, image_host.transport, should_stop=lambda: len(image_host.requests) >= 2
        )
        for task in tasks:
            downloader.submit(task)

        report = downloader.join()

        assert len(report.downloaded) == 2
        assert set(report.cancelled) == {t.destination for t in tasks[2:]}
        assert report.status_for(tasks[4].destination) == "cancelled"
        assert not tasks[4].destination.exists()
        assert downloader.pending() == 0

    def test_cancelled_before_start(self, tmp_path, image_host):
        downloader = ImageDownloader(2, image_host.transport, should_stop=lambda: True)
        downloader.submit(_task(tmp_path, "S", "/img/1.jpg"))

        report = downloader.join()

        assert image_host.requests == []
        assert len(report.cancelled) == 1

    def test_transport_factory_failure(self, tmp_path):
        def broken_factory():
            raise OSError("no route to host")

        task = _task(tmp_path, "S", "/img/1.jpg")
        downloader = ImageDownloader(2, broken_factory, should_stop=lambda: False)
        downloader.submit(task)

        report = downloader.join()

        assert report.downloaded == []
        assert report.cancelled == {}
        assert "no route to host" in report.failed[task.destination]


class TestSyncImages:
    """Directory layout, skip-if-present and final manifest statuses."""

    @pytest.fixture
    def catalog(self):
        return FeedCatalog(products=[
            Product(
                sku="AB123",
                release_date=date(2014, 5, 1),
                images=(_url("/A/AB123.jpg"), _url("/A/AB123_2.png")),
            ),
            Product(sku="NOIMG", release_date=date(2014, 5, 1)),
        ])

    def test_creates_sku_directories(self, tmp_path, image_host, catalog):
        sync_images(catalog, tmp_path, 2, image_host.transport, should_stop=lambda: False)

        assert (tmp_path / "AB123").is_dir()
        assert (tmp_path / "NOIMG").is_dir()

    def test_manifest_statuses(self, tmp_path, image_host, catalog):
        image_host.failing.add("/product_images/A/AB123_2.png")

        manifest, report = sync_images(
            catalog, tmp_path, 2, image_host.transport, should_stop=lambda: False
        )

        assert [(e.original_filename, e.status) for e in manifest] == [
            ("AB123.jpg", "downloaded"),
            ("AB123_2.png", "failed"),
        ]
        assert len(report.failed) == 1
        assert (tmp_path / "AB123" / manifest[0].filename).exists()

    def test_second_run_makes_no_requests(self, tmp_path, image_host, catalog):
        sync_images(catalog, tmp_path, 2, image_host.transport, should_stop=lambda: False)
        first_requests = len(image_host.requests)

        manifest, report = sync_images(
            catalog, tmp_path, 2, image_host.transport, should_stop=lambda: False
        )

        assert first_requests == 2
        assert len(image_host.requests) == 2
        assert [e.status for e in manifest] == ["present", "present"]
        assert report.downloaded == []


class TestImageHosts:
    """Image URLs are accepted from whichever hosts the image settings name."""

    CDN_BASE = "https://cdn.example.com/product_images"

    def test_hosts_of(self):
        assert hosts_of(self.CDN_BASE, "http://Mirror.Example.org", "not a url") == {
            "cdn.example.com",
            "mirror.example.org",
        }

    def test_default_hosts_cover_the_image_settings(self):
        from feedsync.config import ALLOWED_IMAGE_HOSTS

        assert hosts_of(IMAGE_BASE_URL, IMAGE_HOST_URL) <= ALLOWED_IMAGE_HOSTS

    def test_overridden_base_url_still_downloads(self, tmp_path, image_host):
        catalog = FeedCatalog(products=[
            Product(
                sku="AB123",
                release_date=date(2014, 5, 1),
                images=(self.CDN_BASE + "/A/AB123.jpg",),
            ),
        ])

        manifest, report = sync_images(
            catalog, tmp_path, 1, image_host.transport,
            should_stop=lambda: False,
            allowed_hosts=hosts_of(self.CDN_BASE, IMAGE_HOST_URL),
        )

        assert image_host.requests == ["/product_images/A/AB123.jpg"]
        assert [e.status for e in manifest] == ["downloaded"]
        assert report.ok

    def test_rejected_image_is_reported(self, tmp_path, image_host):
        catalog = FeedCatalog(products=[
            Product(
                sku="AB123",
                release_date=date(2014, 5, 1),
                images=("http://other.example.net/A/AB123.jpg",),
            ),
        ])

        manifest, report = sync_images(
            catalog, tmp_path, 1, image_host.transport, should_stop=lambda: False
        )

        assert manifest == []
        assert report.rejected == [("AB123", "http://other.example.net/A/AB123.jpg")]
        assert not report.ok

    def test_environment_override(self):
        """IMAGE_BASE_URL and ALLOWED_IMAGE_HOSTS from the environment extend the allowed hosts."""
        root = Path(__file__).resolve().parents[2]
        env = dict(os.environ)
        env["IMAGE_BASE_URL"] = self.CDN_BASE
        env["ALLOWED_IMAGE_HOSTS"] = "Extra.Example.org, "
        env["PYTHONPATH"] = os.pathsep.join(filter(None, [str(root), env.get("PYTHONPATH")]))

        result = subprocess.run(
            [sys.executable, "-c",
             "from feedsync.config import ALLOWED_IMAGE_HOSTS; "
             "print(' '.join(sorted(ALLOWED_IMAGE_HOSTS)))"],
            env=env, capture_output=True, text=True, check=True,
        )

        hosts = result.stdout.split()
        assert "cdn.example.com" in hosts
        assert "extra.example.org" in hosts
