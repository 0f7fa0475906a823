"""Project-wide logging configuration helpers."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from logging import Handler, Logger
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

__all__ = ["configure_logging", "get_logger"]

DEFAULT_FORMAT = "%(asctime)s | %(levelname)s | %(threadName)s | %(name)s | %(message)s"
ROOT_LOGGER_NAME = "segment_studio"
# Third-party loggers and their default levels; `logging.loggers` overrides them.
DEFAULT_LOGGER_LEVELS = {"urllib3": "WARNING"}


def configure_logging(settings: Mapping[str, Any] | None = None, *, force: bool = True) -> None:
    """Configure the root logger from the ``logging`` section of the configuration.

    .. code-block:: yaml

        logging:
          level: INFO
          loggers:
            segment_studio.pipelines.asr: DEBUG
          file:
            enabled: true
            path: ./data/logs/segment-studio.log
            rotation_mb: 10
            backups: 3

    ``level`` accepts a level name or number; unknown names fall back to INFO.
    The thread name is part of every record so background render and
    transcription jobs can be told apart.
    """

    settings = settings or {}
    logging.basicConfig(level=_coerce_level(settings.get("level")), format=DEFAULT_FORMAT, force=force)

    levels = dict(DEFAULT_LOGGER_LEVELS)
    overrides = settings.get("loggers")
    if isinstance(overrides, Mapping):
        levels.update({str(name): value for name, value in overrides.items()})
    for name, value in levels.items():
        logging.getLogger(name).setLevel(_coerce_level(value))

    handler = _file_handler(settings.get("file"))
    if handler:
        logging.getLogger().addHandler(handler)


def get_logger(name: str | None = None) -> Logger:
    """Return a module logger, defaulting to the package root logger."""
    return logging.getLogger(name if name else ROOT_LOGGER_NAME)


def _file_handler(file_settings: object) -> Handler | None:
    if not isinstance(file_settings, Mapping) or not file_settings.get("enabled"):
        return None
    path_value = file_settings.get("path")
    if not path_value:
        return None

    log_path = Path(str(path_value)).expanduser()
    log_path.parent.mkdir(parents=True, exist_ok=True)
    rotation_mb = file_settings.get("rotation_mb")
    handler: Handler
    if isinstance(rotation_mb, (int, float)) and rotation_mb > 0:
        handler = RotatingFileHandler(
            log_path,
            maxBytes=int(rotation_mb * 1024 * 1024),
            backupCount=int(file_settings.get("backups", 3)),
            encoding="utf-8",
        )
    else:
        handler = logging.FileHandler(log_path, encoding="utf-8")
    handler.setFormatter(logging.Formatter(DEFAULT_FORMAT))
    return handler


def _coerce_level(level: Any) -> int:
    if isinstance(level, int):
        return level
    if isinstance(level, str) and level:
        mapping = logging.getLevelNamesMapping()
        return mapping.get(level.upper(), logging.INFO)
    return logging.INFO
