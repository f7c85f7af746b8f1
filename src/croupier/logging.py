"""Centralized logging configuration for Croupier.

Provides a convenience function to configure the ``croupier`` logger hierarchy.
All modules use ``logging.getLogger(__name__)`` so they inherit from the
top-level ``croupier`` logger.

Each pipeline request binds an id in :data:`request_id_var`; the
:class:`RequestContextFilter` installed by :func:`setup_logging` copies it
onto every record so the stages of one request can be correlated.

Usage::

    from croupier.logging import setup_logging

    # Quick setup, DEBUG to console
    setup_logging(level="DEBUG")

    # Production: INFO to file, WARNING to console
    setup_logging(level="INFO", log_file="croupier.log", console_level="WARNING")
"""

import contextvars
import logging
import sys
from typing import Optional


LIBRARY_LOGGER_NAME = "croupier"

_DEFAULT_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(request_id)s | %(message)s"
_DEFAULT_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

request_id_var: contextvars.ContextVar[str] = contextvars.ContextVar(
    "croupier_request_id", default="-"
)


class RequestContextFilter(logging.Filter):
    """Attach the current request id to each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "request_id"):
            record.request_id = request_id_var.get()
        return True


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    console_level: Optional[str] = None,
    fmt: Optional[str] = None,
    date_fmt: Optional[str] = None,
) -> logging.Logger:
    """Configure the ``croupier`` logger hierarchy.

    Args:
        level: Root level for the ``croupier`` logger
            (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        log_file: If provided, add a FileHandler writing at *level*.
        console_level: Separate level for the console (stderr) handler.
            Defaults to *level* when not set.
        fmt: Log format string. May reference ``%(request_id)s``.
        date_fmt: Date format string. Uses ISO-style default if omitted.

    Returns:
        The configured ``croupier`` root logger.
    """
    logger = logging.getLogger(LIBRARY_LOGGER_NAME)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    # Avoid duplicate handlers on repeated calls
    logger.handlers.clear()

    formatter = logging.Formatter(
        fmt=fmt or _DEFAULT_FORMAT,
        datefmt=date_fmt or _DEFAULT_DATE_FORMAT,
    )
    context_filter = RequestContextFilter()

    console = logging.StreamHandler(sys.stderr)
    effective_console_level = console_level or level
    console.setLevel(getattr(logging, effective_console_level.upper(), logging.INFO))
    console.setFormatter(formatter)
    console.addFilter(context_filter)
    logger.addHandler(console)

    if log_file:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(getattr(logging, level.upper(), logging.INFO))
        file_handler.setFormatter(formatter)
        file_handler.addFilter(context_filter)
        logger.addHandler(file_handler)

    # Prevent propagation to the root logger to avoid duplicate output
    logger.propagate = False

    return logger
