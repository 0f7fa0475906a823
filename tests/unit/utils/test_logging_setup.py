"""Tests for logging configuration."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from logging.handlers import RotatingFileHandler
from pathlib import Path

import pytest

from segment_studio.utils.logging import configure_logging, get_logger


@pytest.fixture(autouse=True)
def restore_logging() -> Iterator[None]:
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)
    for name in ("urllib3", "segment_studio.pipelines.asr"):
        logging.getLogger(name).setLevel(logging.NOTSET)


def test_level_and_logger_overrides() -> None:
    configure_logging({"level": "debug", "loggers": {"segment_studio.pipelines.asr": "ERROR"}})

    assert logging.getLogger().level == logging.DEBUG
    assert logging.getLogger("segment_studio.pipelines.asr").level == logging.ERROR
    assert logging.getLogger("urllib3").level == logging.WARNING


def test_unknown_level_falls_back_to_info() -> None:
    configure_logging({"level": "chatty"})

    assert logging.getLogger().level == logging.INFO


def test_rotating_file_handler(tmp_path: Path) -> None:
    log_path = tmp_path / "logs" / "studio.log"

    configure_logging({"file": {"enabled": True, "path": str(log_path), "rotation_mb": 1, "backups": 2}})
    get_logger("segment_studio.test").warning("render started")

    handler = next(h for h in logging.getLogger().handlers if isinstance(h, RotatingFileHandler))
    handler.flush()
    assert handler.maxBytes == 1024 * 1024
    assert handler.backupCount == 2
    assert "render started" in log_path.read_text(encoding="utf-8")


def test_disabled_file_logging_adds_no_handler(tmp_path: Path) -> None:
    configure_logging({"file": {"enabled": False, "path": str(tmp_path / "x.log")}})

    assert not any(isinstance(h, logging.FileHandler) for h in logging.getLogger().handlers)
    assert not (tmp_path / "x.log").exists()


def test_default_logger_name() -> None:
    assert get_logger().name == "segment_studio"
