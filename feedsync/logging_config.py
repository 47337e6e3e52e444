"""Logging configuration for the feed sync.

Console output for the operator plus a JSONL file with one structured
entry per record, so a run can be audited after the fact.
"""

import json
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from feedsync.config import LOG_DIR

__all__ = [
    "setup_logging",
    "get_logger",
    "log_sync_event",
    "LOG_DIR",
]


ROOT_LOGGER = "feedsync"


class JSONLFileHandler(logging.Handler):
    """Writes one JSON object per record, rotating the file daily."""

    def __init__(self, log_dir: Path, prefix: str = ROOT_LOGGER):
        super().__init__()
        self.log_dir = log_dir
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self.prefix = prefix

    def _get_log_file(self) -> Path:
        today = datetime.now().strftime("%Y%m%d")
        return self.log_dir / f"{self.prefix}_{today}.jsonl"

    def emit(self, record: logging.LogRecord) -> None:
        try:
            entry: Dict[str, Any] = {
                "timestamp": datetime.now().isoformat(),
                "level": record.levelname,
                "logger": record.name,
                "thread": record.threadName,
                "message": record.getMessage(),
            }

            if hasattr(record, "event_type"):
                entry["event_type"] = record.event_type
            if hasattr(record, "extra_data"):
                entry.update(record.extra_data)
            if record.exc_info:
                entry["exception"] = logging.Formatter().formatException(record.exc_info)

            # handle() holds the handler lock, so concurrent workers append whole lines
            with open(self._get_log_file(), "a", encoding="utf-8") as f:
                f.write(json.dumps(entry, ensure_ascii=False, default=str) + "\n")

        except Exception:
            self.handleError(record)


class ColoredConsoleHandler(logging.StreamHandler):
    """Console handler with colored level names on a terminal."""

    COLORS = {
        "DEBUG": "\033[36m",      # Cyan
        "INFO": "\033[32m",       # Green
        "WARNING": "\033[33m",    # Yellow
        "ERROR": "\033[31m",      # Red
        "CRITICAL": "\033[35m",   # Magenta
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        if hasattr(self.stream, "isatty") and self.stream.isatty():
            color = self.COLORS.get(record.levelname, "")
            if color:
                message = message.replace(
                    record.levelname, f"{color}{record.levelname}{self.RESET}", 1
                )
        return message


CONSOLE_FORMAT = "%(asctime)s [%(levelname)s] %(threadName)s %(message)s"


def _console_handler(level: int) -> logging.Handler:
    handler = ColoredConsoleHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(CONSOLE_FORMAT, datefmt="%H:%M:%S"))
    return handler


def setup_logging(
    level: int = logging.INFO,
    log_to_file: bool = True,
    log_to_console: bool = True,
    log_dir: Optional[Path] = None,
) -> logging.Logger:
    """Configure the ``feedsync`` logger for one run.

    Calling it again replaces the previous handlers. When the JSONL file is
    enabled the logger passes DEBUG through, so stage and download events
    reach the file even if the console only shows INFO.

    Args:
        level: Console logging level (default: INFO)
        log_to_file: Whether to log to a JSONL file
        log_to_console: Whether to log to stdout
        log_dir: Custom log directory (default: LOG_DIR)

    Returns:
        The configured ``feedsync`` logger
    """
    logger = logging.getLogger(ROOT_LOGGER)
    for old in list(logger.handlers):
        logger.removeHandler(old)
        old.close()

    handlers: List[logging.Handler] = []
    if log_to_console:
        handlers.append(_console_handler(level))
    if log_to_file:
        file_handler = JSONLFileHandler(log_dir or LOG_DIR)
        file_handler.setLevel(logging.DEBUG)
        handlers.append(file_handler)

    for handler in handlers:
        logger.addHandler(handler)
    logger.setLevel(logging.DEBUG if log_to_file else level)
    return logger


def get_logger(name: str = ROOT_LOGGER) -> logging.Logger:
    """Get a logger below the ``feedsync`` hierarchy.

    Args:
        name: Short module name, e.g. ``"downloader"``

    Returns:
        Logger instance
    """
    if name == ROOT_LOGGER:
        return logging.getLogger(ROOT_LOGGER)
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")


def log_sync_event(
    event_type: str,
    data: Dict[str, Any],
    level: int = logging.INFO,
    logger_name: str = ROOT_LOGGER,
) -> None:
    """Log a structured pipeline event.

    Args:
        event_type: Type of event (e.g. 'stage_start', 'image_failed')
        data: Event-specific data; an optional 'message' key becomes the text
        level: Log level
        logger_name: Logger to use
    """
    logger = get_logger(logger_name)
    if not logger.isEnabledFor(level):
        return

    record = logger.makeRecord(
        logger.name,
        level,
        "(feedsync)",
        0,
        data.get("message", event_type),
        (),
        None,
    )
    record.event_type = event_type
    record.extra_data = {k: v for k, v in data.items() if k != "message"}

    logger.handle(record)
