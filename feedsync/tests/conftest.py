"""Shared fixtures for the feedsync test suite."""

import logging
import threading
import time
from pathlib import Path

import pytest
import requests  # type: ignore[import-untyped]

from feedsync.shutdown import get_shutdown_handler

SAMPLE_FEED = """<?xml version="1.0" encoding="UTF-8"?>
<products>
  <product>
    <sku>AB123</sku>
    <name><![CDATA[Deluxe <b>Widget</b> &amp; Co]]></name>
    <manufacturer code="M1">Acme &amp;amp; Sons</manufacturer>
    <type code="T1">Toys</type>
    <categories>
      <category code="10" parent="0">Toys</category>
      <category code="20" parent="10">Dolls</category>
    </categories>
    <description><![CDATA[<p>Great &amp; fun</p>]]></description>
    <height>5.5</height>
    <length>10</length>
    <diameter>2</diameter>
    <weight>0.4</weight>
    <color>Red</color>
    <material>Vinyl</material>
    <barcode>0123456789012</barcode>
    <stock_quantity>7</stock_quantity>
    <images>
      <image>/A/AB123.jpg</image>
      <image>/A/AB123_2.png</image>
    </images>
    <release_date>2014-05-01</release_date>
  </product>
  <product>
    <sku>CD456</sku>
    <name>Caf&amp;eacute; set</name>
    <manufacturer code="M2">Beta</manufacturer>
    <type code="T1">Toys</type>
    <categories>
      <category code="20" parent="10">Dolls</category>
    </categories>
    <images>
      <image>/C/CD456.jpg</image>
    </images>
    <release_date>2015-01-02</release_date>
  </product>
</products>
"""


class FakeImageHost:
    """Stands in for the image host; hands out one transport per worker."""

    def __init__(self, failing=(), delay: float = 0.0):
        self.failing = set(failing)
        self.delay = delay
        self.requests = []
        self.opened = 0
        self.closed = 0
        self.lock = threading.Lock()

    def transport(self) -> "FakeTransport":
        with self.lock:
            self.opened += 1
        return FakeTransport(self)


class FakeTransport:
    def __init__(self, host: FakeImageHost):
        self.host = host

    def fetch(self, path: str) -> bytes:
        with self.host.lock:
            self.host.requests.append(path)
        if self.host.delay:
            time.sleep(self.host.delay)
        if path in self.host.failing:
            raise requests.HTTPError(f"404 Client Error: Not Found for url: {path}")
        return f"image:{path}".encode("utf-8")

    def close(self) -> None:
        with self.host.lock:
            self.host.closed += 1


@pytest.fixture
def sample_feed_xml():
    return SAMPLE_FEED


@pytest.fixture
def write_feed(tmp_path):
    """Return a helper that writes feed XML to a file and returns its path."""

    def _write(xml: str, name: str = "products.xml") -> Path:
        path = tmp_path / name
        path.write_text(xml, encoding="utf-8")
        return path

    return _write


@pytest.fixture
def sample_feed_path(write_feed):
    return write_feed(SAMPLE_FEED)


@pytest.fixture
def image_host():
    """Fake image host recording every requested path."""
    return FakeImageHost()


@pytest.fixture(autouse=True)
def reset_shutdown_and_logging():
    """Clear the cancellation flag and feedsync log handlers around each test."""
    handler = get_shutdown_handler()
    handler.reset()
    yield
    handler.uninstall()
    handler.reset()

    logger = logging.getLogger("feedsync")
    for h in list(logger.handlers):
        logger.removeHandler(h)
        h.close()
    logger.setLevel(logging.NOTSET)
