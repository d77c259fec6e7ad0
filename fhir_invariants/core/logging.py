"""Structured logging setup."""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog

from .config import Settings


def configure_logging(
    level: int | str | None = None,
    *,
    settings: Settings | None = None,
) -> None:
    """Configure stdlib logging and structlog for the engine.

    Args:
        level: Optional logging level or level name. Ignored when ``settings``
            is provided.
        settings: Optional settings object supplying the log level.
    """
    if settings is not None:
        level = settings.log_level

    if isinstance(level, str):
        level_value = getattr(logging, level.upper(), logging.INFO)
    elif isinstance(level, int):
        level_value = level
    else:
        level_value = logging.INFO

    logging.basicConfig(level=level_value, stream=sys.stdout, format="%(message)s")

    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.JSONRenderer(sort_keys=True),
    ]
    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level_value),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=True,
    )
