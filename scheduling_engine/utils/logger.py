"""Process-wide logging for the scheduler layers."""

from __future__ import annotations

import logging
import sys
from typing import Optional

from scheduling_engine.utils.config import get_settings


_configured_level: Optional[str] = None


def configure_logging(level: Optional[str] = None, *, force: bool = False) -> str:
    """Install the stdout handler once and return the active level name.

    ``level`` overrides ``LOG_LEVEL``; ``force`` replaces an earlier setup.
    Unknown level names fall back to INFO.
    """

    global _configured_level
    if _configured_level is not None and not force:
        return _configured_level

    settings = get_settings()
    requested = (level or settings.log_level).upper()
    resolved = requested if isinstance(logging.getLevelName(requested), int) else "INFO"
    logging.basicConfig(
        level=resolved,
        format=settings.log_format,
        stream=sys.stdout,
        force=force,
    )
    _configured_level = resolved
    if resolved != requested:
        logging.getLogger(__name__).warning(
            "Unknown log level, using INFO | requested=%s", requested
        )
    return resolved


def get_logger(name: str) -> logging.Logger:
    """Return a module logger, configuring logging on first use."""
    configure_logging()
    return logging.getLogger(name)
