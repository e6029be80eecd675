"""Logging configuration shared by every subgen module."""

from __future__ import annotations

import logging
import os

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
_LOGGING_CONFIGURED = False


def _resolve_level(level: int | str | None) -> int:
    """Resolves a logging level from an explicit value or LOG_LEVEL."""
    if level is None:
        level = os.getenv("LOG_LEVEL", "INFO").strip() or "INFO"
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(level.upper())
    if isinstance(resolved, int):
        return resolved
    logging.getLogger(__name__).warning(
        "Unknown log level %r; falling back to INFO.", level
    )
    return logging.INFO


def configure_logging(level: int | str | None = None) -> int:
    """Configures root logging once and returns the applied level."""
    global _LOGGING_CONFIGURED
    resolved_level = _resolve_level(level)
    root_logger = logging.getLogger()
    if not root_logger.handlers:
        logging.basicConfig(format=LOG_FORMAT, level=resolved_level)
    root_logger.setLevel(resolved_level)
    for handler in root_logger.handlers:
        handler.setLevel(resolved_level)
    _LOGGING_CONFIGURED = True
    return resolved_level


def get_logger(name: str) -> logging.Logger:
    """Returns a named logger, configuring logging from the environment on first use."""
    if not _LOGGING_CONFIGURED:
        configure_logging()
    return logging.getLogger(name)
