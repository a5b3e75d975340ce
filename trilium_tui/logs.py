"""Logging setup for the interactive UI.

While the UI owns the terminal nothing may be printed, so records go to an
in-memory ring buffer (shown by the log viewer) and optionally to a file.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

PACKAGE_LOGGER = "trilium_tui"


@dataclass(frozen=True)
class LogEntry:
    timestamp: datetime
    level: str  # DEBUG, INFO, WARNING, ERROR
    operation: str  # logger name, without the package prefix
    message: str


class LogBuffer(logging.Handler):
    """Keeps the most recent records for the log viewer."""

    def __init__(self, capacity: int = 1000, level: int = logging.DEBUG) -> None:
        super().__init__(level=level)
        self._entries: deque[LogEntry] = deque(maxlen=capacity)
        self._guard = threading.Lock()
        self._version = 0

    def emit(self, record: logging.LogRecord) -> None:
        try:
            message = record.getMessage()
        except Exception:
            self.handleError(record)
            return
        name = record.name
        if name.startswith(PACKAGE_LOGGER + "."):
            name = name[len(PACKAGE_LOGGER) + 1 :]
        entry = LogEntry(
            timestamp=datetime.fromtimestamp(record.created),
            level=record.levelname,
            operation=name,
            message=message,
        )
        with self._guard:
            self._entries.append(entry)
            self._version += 1

    @property
    def version(self) -> int:
        """Bumped on every append/clear; lets the UI skip unchanged syncs."""
        return self._version

    def entries(self) -> tuple[LogEntry, ...]:
        with self._guard:
            return tuple(self._entries)

    def clear(self) -> None:
        with self._guard:
            self._entries.clear()
            self._version += 1


def setup_logging(
    *,
    debug: bool = False,
    log_file: Path | None = None,
    capacity: int = 1000,
) -> LogBuffer:
    """Route package logs to a LogBuffer (and `log_file` if given)."""
    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(logging.DEBUG if debug else logging.INFO)
    logger.propagate = False

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    buffer = LogBuffer(capacity=capacity)
    logger.addHandler(buffer)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s")
        )
        logger.addHandler(file_handler)

    return buffer


def set_debug(enabled: bool) -> None:
    """Toggle DEBUG records at runtime."""
    logging.getLogger(PACKAGE_LOGGER).setLevel(logging.DEBUG if enabled else logging.INFO)
