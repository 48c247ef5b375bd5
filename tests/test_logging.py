"""Tests for structured logging setup."""

import json
import logging
import os
import tempfile
from logging.handlers import RotatingFileHandler
from pathlib import Path

from packsync.logging import setup_logging


def _reset(logger: logging.Logger) -> None:
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
        handler.close()


def test_json_lines_carry_context_fields():
    with tempfile.TemporaryDirectory() as tmpdir:
        logger = setup_logging(Path(tmpdir))
        try:
            logging.getLogger("packsync.sync.reconcile").warning(
                "Could not save %s", "resource compute", extra={"pack": "base", "version": "1", "item": "compute"}
            )
            lines = (Path(tmpdir) / "packsync.log").read_text().splitlines()
        finally:
            _reset(logger)

    entry = json.loads(lines[-1])
    assert entry["level"] == "WARNING"
    assert entry["logger"] == "packsync.sync.reconcile"
    assert entry["msg"] == "Could not save resource compute"
    assert entry["pack"] == "base"
    assert entry["version"] == "1"
    assert entry["item"] == "compute"
    assert "env" not in entry


def test_setup_is_idempotent():
    with tempfile.TemporaryDirectory() as tmpdir:
        logger = setup_logging(Path(tmpdir))
        try:
            setup_logging(Path(tmpdir))
            setup_logging(Path(tmpdir), verbosity=2)
            file_handlers = [h for h in logger.handlers if isinstance(h, RotatingFileHandler)]
            assert len(file_handlers) == 1
            assert len(logger.handlers) == 2
        finally:
            _reset(logger)


def test_console_level_follows_verbosity():
    logger = setup_logging(verbosity=0)
    try:
        [console] = logger.handlers
        assert console.level == logging.WARNING
        setup_logging(verbosity=1)
        assert console.level == logging.INFO
        setup_logging(verbosity=2)
        assert console.level == logging.DEBUG
    finally:
        _reset(logger)


def test_file_handler_moves_with_log_dir():
    with tempfile.TemporaryDirectory() as first, tempfile.TemporaryDirectory() as second:
        logger = setup_logging(Path(first))
        try:
            setup_logging(Path(second))
            [handler] = [h for h in logger.handlers if isinstance(h, RotatingFileHandler)]
            assert Path(handler.baseFilename).parent == Path(os.path.abspath(second))
        finally:
            _reset(logger)
