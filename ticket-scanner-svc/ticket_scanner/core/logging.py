"""Logging helpers for the ticket scanner service."""

from __future__ import annotations

import logging
import sys
import threading
from pathlib import Path

from .config import get_settings

_logging_configured = False
_logging_lock = threading.Lock()

_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
_DATEFMT = "%Y-%m-%dT%H:%M:%S"

_logger = logging.getLogger(__name__)


def configure_logging() -> None:
    """Configure process-wide logging from settings."""
    global _logging_configured

    settings = get_settings()
    level = getattr(logging, settings.log_level.upper(), logging.INFO)

    handlers: list[logging.Handler] = []

    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(logging.Formatter(_FORMAT, datefmt=_DATEFMT))
    handlers.append(stream_handler)

    if settings.log_file:
        try:
            Path(settings.log_file).parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(settings.log_file)
            file_handler.setFormatter(logging.Formatter(_FORMAT, datefmt=_DATEFMT))
            handlers.append(file_handler)
        except OSError as exc:
            _logger.warning("Failed to open log file %s: %s", settings.log_file, exc)

    logging.basicConfig(level=level, handlers=handlers, force=True)

    _logging_configured = True


def get_logger(name: str) -> logging.Logger:
    if not _logging_configured:
        with _logging_lock:
            if not _logging_configured:
                configure_logging()
    return logging.getLogger(name)
