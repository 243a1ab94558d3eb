"""Logging for track-release runs.

Writes JSONL to $GIT_DIR/track-release.log with rotation (5MB, 3 backups),
and short human-readable lines to stderr, which a post-receive hook relays
to whoever pushed.
"""

from __future__ import annotations

import json
import logging
import os
import sys
import threading
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, TextIO

LOGGER_NAME = "releasetrack"
LOG_FILENAME = "track-release.log"
PROG_NAME = "track-release"
_setup_lock = threading.Lock()
_MAX_BYTES = 5 * 1024 * 1024  # 5MB
_BACKUP_COUNT = 3
_EXTRA_FIELDS = ("branch", "release", "commit", "error")


class _JsonFormatter(logging.Formatter):
    """Format log records as single-line JSON."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": self.formatTime(record, datefmt="%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "msg": record.getMessage(),
        }
        for name in _EXTRA_FIELDS:
            if hasattr(record, name):
                entry[name] = getattr(record, name)
        if record.exc_info and record.exc_info[1]:
            entry["exception"] = str(record.exc_info[1])
        return json.dumps(entry, default=str)


class _ConsoleFormatter(logging.Formatter):
    """``track-release: message``, with warnings and errors flagged."""

    def format(self, record: logging.LogRecord) -> str:
        msg = record.getMessage()
        if record.levelno >= logging.ERROR:
            msg = f"error: {msg}"
        elif record.levelno >= logging.WARNING:
            msg = f"warning: {msg}"
        return f"{PROG_NAME}: {msg}"


class _ConsoleHandler(logging.StreamHandler):  # type: ignore[type-arg]
    """Marker subclass so setup can find its own stderr handler again."""


def setup_logging(
    log_dir: Path | None,
    *,
    console: bool = True,
    verbose: bool = False,
    stream: TextIO | None = None,
) -> logging.Logger:
    """Set up JSON file logging in *log_dir* and, optionally, stderr output.

    Idempotent: calling again with the same directory does not add
    handlers; a different directory replaces the old file handler.
    """
    logger = logging.getLogger(LOGGER_NAME)

    with _setup_lock:
        if log_dir is not None:
            _install_file_handler(logger, log_dir / LOG_FILENAME)
        if console:
            _install_console_handler(logger, stream or sys.stderr, logging.DEBUG if verbose else logging.INFO)
        logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    return logger


def _install_file_handler(logger: logging.Logger, log_path: Path) -> None:
    target_filename = os.path.abspath(str(log_path))
    for h in logger.handlers[:]:
        if not isinstance(h, RotatingFileHandler):
            continue
        if h.baseFilename == target_filename:
            return
        # Log directory changed.
        logger.removeHandler(h)
        h.close()

    handler = RotatingFileHandler(
        str(log_path),
        maxBytes=_MAX_BYTES,
        backupCount=_BACKUP_COUNT,
    )
    handler.setFormatter(_JsonFormatter())
    logger.addHandler(handler)


def _install_console_handler(logger: logging.Logger, stream: TextIO, level: int) -> None:
    for h in logger.handlers[:]:
        if isinstance(h, _ConsoleHandler):
            if h.stream is stream:
                h.setLevel(level)
                return
            logger.removeHandler(h)

    handler = _ConsoleHandler(stream)
    handler.setFormatter(_ConsoleFormatter())
    handler.setLevel(level)
    logger.addHandler(handler)
