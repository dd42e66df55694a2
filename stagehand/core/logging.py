"""Logging helpers for stagehand.

Modules log through ``logging.getLogger(__name__)``; the host calls
:func:`configure_root_logger` once with the configured level and format.

Usage:
    from stagehand.core.logging import get_logger

    logger = get_logger(__name__)
    log_with_context(logger, logging.INFO, "request done", request_id=rid)
"""

import logging
import sys
from typing import Any


class LoggerFactory:
    """Hands out named loggers and remembers which ones it configured."""

    def __init__(self):
        self._loggers: dict[str, logging.Logger] = {}

    def get_logger(self, name: str, level: int | None = None) -> logging.Logger:
        if name in self._loggers:
            return self._loggers[name]
        logger = logging.getLogger(name)
        if level is not None:
            logger.setLevel(level)
        self._loggers[name] = logger
        return logger

    def reset_all(self) -> None:
        """Forget every logger (primarily for testing)."""
        for logger in self._loggers.values():
            logger.setLevel(logging.NOTSET)
        self._loggers.clear()

    def get_registered_loggers(self) -> dict[str, logging.Logger]:
        return self._loggers.copy()


_factory = LoggerFactory()
_MARKER = "_stagehand_handler"


def get_logger(name: str, level: int | None = None) -> logging.Logger:
    """Get a logger instance from the shared factory."""
    return _factory.get_logger(name, level=level)


def configure_root_logger(
    level: int | str = logging.INFO,
    format_string: str | None = None,
    handlers: list[logging.Handler] | None = None,
) -> None:
    """Configure the root logger, replacing handlers installed by earlier calls.

    This should be called once at host build time.
    """
    root = logging.getLogger()
    root.setLevel(level)

    if format_string is None:
        format_string = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    formatter = logging.Formatter(format_string)

    # Only handlers installed here are replaced; test capture handlers stay.
    for handler in root.handlers[:]:
        if getattr(handler, _MARKER, False):
            root.removeHandler(handler)

    if handlers is None:
        handlers = [logging.StreamHandler(sys.stdout)]
    for handler in handlers:
        handler.setFormatter(formatter)
        setattr(handler, _MARKER, True)
        root.addHandler(handler)


def log_with_context(
    logger: logging.Logger,
    level: int,
    message: str,
    **context: Any,
) -> None:
    """Log ``message`` with structured fields attached as ``extra``."""
    logger.log(level, message, extra=context)


__all__ = [
    "LoggerFactory",
    "get_logger",
    "configure_root_logger",
    "log_with_context",
]
