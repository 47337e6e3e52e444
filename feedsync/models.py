"""Data models for the wholesale feed."""

import posixpath
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Tuple
from urllib.parse import urlparse

__all__ = [
    "Product",
    "CategoryEntry",
    "FeedCatalog",
    "DownloadTask",
    "ManifestEntry",
]


@dataclass(frozen=True)
class Product:
    """A single product record from the supplier feed.

    Physical attributes are kept as the text the feed carries; only the
    release date is converted. Manufacturer, product type and categories
    are codes into the registries of the owning FeedCatalog.
    """

    # Required fields
    sku: str
    release_date: date

    name: str = ""

    # Physical attributes, as received
    height: Optional[str] = None
    length: Optional[str] = None
    width: Optional[str] = None
    weight: Optional[str] = None
    color: Optional[str] = None
    material: Optional[str] = None

    upc: Optional[str] = None
    stock_quantity: Optional[str] = None

    # Registry codes
    manufacturer: Optional[str] = None
    product_type: Optional[str] = None
    categories: Tuple[str, ...] = ()

    # Absolute image URLs in feed order
    images: Tuple[str, ...] = ()


@dataclass(frozen=True)
class CategoryEntry:
    """A category registry value. ``parent`` is a category code."""

    name: str
    parent: str


@dataclass
class FeedCatalog:
    """Everything a single pass over the feed produces."""

    products: List[Product] = field(default_factory=list)
    manufacturers: Dict[str, str] = field(default_factory=dict)
    product_types: Dict[str, str] = field(default_factory=dict)
    categories: Dict[str, CategoryEntry] = field(default_factory=dict)
    descriptions: Dict[str, str] = field(default_factory=dict)

    def image_pairs(self) -> Iterator[Tuple[str, str]]:
        """Yield (sku, image URL) for every product image, in feed order."""
        for product in self.products:
            for url in product.images:
                yield product.sku, url


@dataclass(frozen=True)
class DownloadTask:
    """One image to fetch into its canonical destination."""

    sku: str
    url: str
    destination: Path
    original_filename: str

    @property
    def request_path(self) -> str:
        """Path component sent to the image host."""
        return urlparse(self.url).path

    @staticmethod
    def original_filename_of(url: str) -> str:
        return posixpath.basename(urlparse(url).path)


@dataclass(frozen=True)
class ManifestEntry:
    """A row of the download manifest.

    status is one of: present, downloaded, failed, cancelled, pending.
    """

    sku: str
    filename: str
    original_filename: str
    status: str = "pending"
