"""Process-wide logging setup."""

from __future__ import annotations

import logging
import sys
from typing import Optional

from allocation_engine.utils.config import get_settings


_LOGGER_INITIALIZED = False


def configure_logging(level: Optional[str] = None) -> None:
    """Configure the root handler once.

    Every module logs through ``get_logger(__name__)`` so the pipe-separated
    format stays identical for the API, the services and the background worker.
    """

    global _LOGGER_INITIALIZED
    if _LOGGER_INITIALIZED:
        return

    resolved_level = (level or get_settings().log_level).upper()
    logging.basicConfig(
        level=resolved_level,
        format="%(asctime)s | %(levelname)s | %(threadName)s | %(name)s | %(message)s",
        stream=sys.stdout,
    )
    _LOGGER_INITIALIZED = True


def get_logger(name: str) -> logging.Logger:
    """Return a logger for the requested module."""
    configure_logging()
    return logging.getLogger(name)
