"""Command-line interface for the feed sync."""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

# Environment overrides must be in place before feedsync.config is imported
load_dotenv()

from feedsync.categories import CategoryPathResolver  # noqa: E402
from feedsync.config import (  # noqa: E402
    DOWNLOAD_DIR,
    DOWNLOAD_WORKERS,
    EXPORT_DIR,
    FEED_CACHE_PATH,
    FEED_URL,
)
from feedsync.feed_parser import parse_feed  # noqa: E402
from feedsync.fetcher import fetch_feed  # noqa: E402
from feedsync.logging_config import setup_logging  # noqa: E402
from feedsync.shutdown import get_shutdown_handler, shutdown_requested  # noqa: E402
from feedsync.workflows import (  # noqa: E402
    PipelineError,
    PipelineOptions,
    pipeline_stage,
    run_pipeline,
)

__all__ = ["main", "parse_args", "list_categories"]

EXIT_OK = 0
EXIT_FATAL = 1
EXIT_IMAGES_FAILED = 2
EXIT_INTERRUPTED = 130


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="feedsync",
        description="Import the wholesale product feed into CSV tables and mirror product images",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Full run: fetch feed (cached for an hour), export tables, sync images
  python -m feedsync.cli

  # Force a fresh feed download and use 10 download workers
  python -m feedsync.cli --refresh --workers 10

  # Parse a local feed file and only write the tables
  python -m feedsync.cli --feed-file products.xml --skip-images

  # Show the full path of every category in the cached feed
  python -m feedsync.cli --list-categories
        """,
    )

    # Feed source
    parser.add_argument(
        "--feed-file",
        type=Path,
        metavar="PATH",
        help="Parse this local feed file instead of fetching the feed",
    )
    parser.add_argument(
        "--feed-url",
        default=FEED_URL,
        help=f"Feed URL (default: {FEED_URL})",
    )
    parser.add_argument(
        "--refresh",
        action="store_true",
        help="Download the feed even if the cached copy is less than an hour old",
    )

    # Output
    parser.add_argument(
        "--export-dir",
        type=Path,
        default=EXPORT_DIR,
        help=f"Directory for CSV tables, descriptions and images (default: {EXPORT_DIR})",
    )
    parser.add_argument(
        "--download-dir",
        type=Path,
        default=DOWNLOAD_DIR,
        help=f"Directory for the cached feed (default: {DOWNLOAD_DIR})",
    )

    # Images
    parser.add_argument(
        "--workers",
        type=int,
        default=DOWNLOAD_WORKERS,
        help=f"Concurrent image downloads (default: {DOWNLOAD_WORKERS})",
    )
    parser.add_argument(
        "--skip-images",
        action="store_true",
        help="Don't download images or write product_images.csv",
    )
    parser.add_argument(
        "--strict-images",
        action="store_true",
        help=f"Exit with status {EXIT_IMAGES_FAILED} if any image fails to download or is rejected",
    )

    # Info commands
    parser.add_argument(
        "--list-categories",
        action="store_true",
        help="Print the full path of every category and exit",
    )

    # Logging
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Console log level (default: INFO)",
    )
    parser.add_argument(
        "--no-log-file",
        action="store_true",
        help="Don't write the JSONL log under LOG_DIR (default: logs/)",
    )

    args = parser.parse_args(argv)
    if args.workers < 1:
        parser.error("--workers must be at least 1")
    return args


def list_categories(feed_path: Path) -> None:
    """Print code and full path for every category in the feed."""
    catalog = parse_feed(feed_path)
    paths = CategoryPathResolver(catalog.categories).resolve_all()
    for code, full_path in sorted(paths.items(), key=lambda item: item[1]):
        print(f"  {code}: {full_path}")


def _feed_cache_path(download_dir: Path) -> Path:
    if download_dir == DOWNLOAD_DIR:
        return FEED_CACHE_PATH
    return download_dir / FEED_CACHE_PATH.name


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for CLI. Returns the process exit status."""
    args = parse_args(argv)
    logger = setup_logging(
        level=getattr(logging, args.log_level),
        log_to_file=not args.no_log_file,
    )

    options = PipelineOptions(
        export_dir=args.export_dir,
        download_dir=args.download_dir,
        feed_url=args.feed_url,
        feed_cache_path=_feed_cache_path(args.download_dir),
        feed_file=args.feed_file,
        refresh_feed=args.refresh,
        workers=args.workers,
        skip_images=args.skip_images,
    )

    handler = get_shutdown_handler().install()
    try:
        if args.list_categories:
            with pipeline_stage("list categories"):
                feed_path = options.feed_file or fetch_feed(
                    url=options.feed_url,
                    cache_path=options.feed_cache_path,
                    max_age=options.feed_max_age,
                    force=options.refresh_feed,
                )
                list_categories(feed_path)
            return EXIT_OK

        result = run_pipeline(options)
    except PipelineError as e:
        logger.error(str(e))
        return EXIT_FATAL
    except KeyboardInterrupt:
        logger.warning("Interrupted")
        return EXIT_INTERRUPTED
    finally:
        handler.uninstall()

    report = result.report
    logger.info(
        f"Done: {len(result.catalog.products)} products, "
        f"{result.descriptions_written} descriptions"
    )
    if report is not None:
        logger.info(
            f"Images: {len(report.downloaded)} downloaded, {len(report.failed)} failed, "
            f"{len(report.cancelled)} cancelled, {len(report.rejected)} rejected"
        )

    if shutdown_requested():
        return EXIT_INTERRUPTED
    if args.strict_images and report is not None and not report.ok:
        return EXIT_IMAGES_FAILED
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
