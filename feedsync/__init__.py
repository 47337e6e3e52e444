"""Wholesale product feed importer and image mirror."""

__version__ = "0.1.0"

# Re-export main components for convenient imports
from feedsync.categories import (
    CategoryCycleError,
    CategoryPathResolver,
    CategoryResolutionError,
    MissingCategoryError,
    resolve_category_path,
)
from feedsync.csv_utils import export_catalog
from feedsync.downloader import ImageDownloader, canonical_filename, plan_downloads, sync_images
from feedsync.feed_parser import FeedDataError, parse_feed
from feedsync.fetcher import FeedFetchError, HttpTransport, fetch_feed
from feedsync.models import CategoryEntry, DownloadTask, FeedCatalog, ManifestEntry, Product
from feedsync.workflows import PipelineError, PipelineOptions, run_pipeline

__all__ = [
    # Version
    "__version__",
    # Models
    "Product",
    "CategoryEntry",
    "FeedCatalog",
    "DownloadTask",
    "ManifestEntry",
    # Parsing
    "parse_feed",
    "FeedDataError",
    # Categories
    "resolve_category_path",
    "CategoryPathResolver",
    "CategoryResolutionError",
    "MissingCategoryError",
    "CategoryCycleError",
    # Fetching and images
    "fetch_feed",
    "FeedFetchError",
    "HttpTransport",
    "canonical_filename",
    "plan_downloads",
    "ImageDownloader",
    "sync_images",
    # Export and workflow
    "export_catalog",
    "run_pipeline",
    "PipelineOptions",
    "PipelineError",
]
