"""Run-wide cancellation for the image sync.

SIGINT/SIGTERM set a shared event that download workers check between
tasks; a second signal exits immediately.
"""

import signal
import sys
import threading
from typing import Any, Dict, Optional

from feedsync.logging_config import get_logger

__all__ = [
    "ShutdownHandler",
    "get_shutdown_handler",
    "shutdown_requested",
    "request_shutdown",
]

logger = get_logger("shutdown")

HANDLED_SIGNALS = (signal.SIGINT, signal.SIGTERM)

# Exit status after a forced quit (128 + SIGINT)
FORCED_EXIT_STATUS = 130


class ShutdownHandler:
    """Holds the cancellation event and the signal handlers that set it.

    Usage:
        handler = get_shutdown_handler().install()
        try:
            while not handler.shutdown_requested:
                ...
        finally:
            handler.uninstall()
    """

    _instance: Optional["ShutdownHandler"] = None
    _lock = threading.Lock()

    def __init__(self) -> None:
        self._cancelled = threading.Event()
        self._previous: Dict[int, Any] = {}

    @classmethod
    def get_instance(cls) -> "ShutdownHandler":
        with cls._lock:
            if cls._instance is None:
                cls._instance = cls()
            return cls._instance

    @property
    def installed(self) -> bool:
        return bool(self._previous)

    def install(self) -> "ShutdownHandler":
        """Route SIGINT/SIGTERM to this handler. Must run on the main thread."""
        if self.installed:
            return self
        for signum in HANDLED_SIGNALS:
            self._previous[signum] = signal.signal(signum, self._handle_signal)
        return self

    def uninstall(self) -> None:
        """Put back whatever handlers were active before install()."""
        for signum, previous in self._previous.items():
            if previous is not None:
                signal.signal(signum, previous)
        self._previous.clear()

    def _handle_signal(self, signum: int, frame) -> None:
        logger.warning(
            f"Received {signal.Signals(signum).name}, finishing in-flight downloads "
            f"(send again to force quit)"
        )
        self._cancelled.set()
        signal.signal(signum, self._force_exit)

    def _force_exit(self, signum: int, frame) -> None:
        logger.error("Force quitting")
        sys.exit(FORCED_EXIT_STATUS)

    @property
    def shutdown_requested(self) -> bool:
        return self._cancelled.is_set()

    def request_shutdown(self) -> None:
        """Cancel the run without a signal."""
        self._cancelled.set()

    def reset(self) -> None:
        """Clear the cancellation flag (tests, or a second run in one process)."""
        self._cancelled.clear()


def get_shutdown_handler() -> ShutdownHandler:
    return ShutdownHandler.get_instance()


def shutdown_requested() -> bool:
    """True once a signal or request_shutdown() has cancelled the run."""
    return get_shutdown_handler().shutdown_requested


def request_shutdown() -> None:
    get_shutdown_handler().request_shutdown()
