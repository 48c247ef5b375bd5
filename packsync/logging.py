"""Structured logging for packsync.

Console output goes to stderr. When a log directory is given, JSONL is also
written to ``<log_dir>/packsync.log`` with rotation (5MB, 3 backups).
"""

from __future__ import annotations

import json
import logging
import os
import sys
import threading
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

_LOG_FILENAME = "packsync.log"
_setup_lock = threading.Lock()
_MAX_BYTES = 5 * 1024 * 1024  # 5MB
_BACKUP_COUNT = 3

# Extras copied verbatim into each JSON entry when present on the record.
_CONTEXT_FIELDS = ("pack", "version", "env", "item", "error")


class _JsonFormatter(logging.Formatter):
    """Format log records as single-line JSON."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": self.formatTime(record, datefmt="%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        for name in _CONTEXT_FIELDS:
            if hasattr(record, name):
                entry[name] = getattr(record, name)
        if record.exc_info and record.exc_info[1]:
            entry["exception"] = str(record.exc_info[1])
        return json.dumps(entry, default=str)


class _ConsoleFormatter(logging.Formatter):
    """Plain text with a ``[pack version env]`` prefix when context is present."""

    def format(self, record: logging.LogRecord) -> str:
        context = " ".join(
            str(getattr(record, name)) for name in ("pack", "version", "env") if getattr(record, name, None)
        )
        message = record.getMessage()
        if context:
            message = f"[{context}] {message}"
        return f"{record.levelname.lower()}: {message}"


class _StderrHandler(logging.StreamHandler):
    """Writes to whatever ``sys.stderr`` is at emit time."""

    @property
    def stream(self):
        return sys.stderr

    @stream.setter
    def stream(self, value):
        pass


def _console_level(verbosity: int) -> int:
    if verbosity >= 2:
        return logging.DEBUG
    if verbosity == 1:
        return logging.INFO
    return logging.WARNING


def setup_logging(log_dir: Path | None = None, verbosity: int = 0) -> logging.Logger:
    """Configure the ``packsync`` logger tree.

    Returns the root packsync logger. Safe to call repeatedly: handlers are
    replaced, never stacked.
    """
    logger = logging.getLogger("packsync")

    with _setup_lock:
        console = next((h for h in logger.handlers if getattr(h, "_packsync_console", False)), None)
        if console is None:
            console = _StderrHandler()
            console._packsync_console = True  # type: ignore[attr-defined]
            console.setFormatter(_ConsoleFormatter())
            logger.addHandler(console)
        console.setLevel(_console_level(verbosity))

        if log_dir is not None:
            log_dir.mkdir(parents=True, exist_ok=True)
            target_filename = os.path.abspath(str(log_dir / _LOG_FILENAME))
            existing = False
            for h in logger.handlers[:]:
                if not isinstance(h, RotatingFileHandler):
                    continue
                if h.baseFilename == target_filename:
                    existing = True
                    continue
                # Different path: drop the stale handler.
                logger.removeHandler(h)
                h.close()
            if not existing:
                handler = RotatingFileHandler(
                    target_filename,
                    maxBytes=_MAX_BYTES,
                    backupCount=_BACKUP_COUNT,
                )
                handler.setFormatter(_JsonFormatter())
                handler.setLevel(logging.DEBUG)
                logger.addHandler(handler)

        logger.setLevel(logging.DEBUG)
    return logger
