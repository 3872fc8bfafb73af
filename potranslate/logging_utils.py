"""
Logging setup for potranslate.

Modules log through ``logging.getLogger(__name__)``; pipeline progress lines
go through :func:`log` on the package logger.
"""

from __future__ import annotations

import logging

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

PACKAGE_LOGGER = "potranslate"

# Loggers that emit one warning per entry; only shown at verbose level 2+.
_PER_ENTRY_LOGGERS = ("potranslate.protocol", "potranslate.validators")

_VERBOSITY_LEVELS = {
    0: logging.ERROR,
    1: logging.INFO,
    2: logging.INFO,
    3: logging.DEBUG,
}


def configure_logging(verbose_level: int = 1) -> None:
    """
    Configure root logging for a CLI run.

    Args:
        verbose_level: 0=errors, 1=normal, 2=verbose, 3=debug
    """
    verbose_level = max(0, min(3, int(verbose_level)))
    level = _VERBOSITY_LEVELS[verbose_level]

    logging.basicConfig(level=level, format=LOG_FORMAT)
    logging.getLogger(PACKAGE_LOGGER).setLevel(level)

    per_entry_level = level if verbose_level >= 2 else logging.ERROR
    for name in _PER_ENTRY_LOGGERS:
        logging.getLogger(name).setLevel(per_entry_level)

    # requests/urllib3 are chatty at DEBUG
    if verbose_level < 3:
        logging.getLogger("urllib3").setLevel(logging.WARNING)


def log(message: str, level: int = logging.INFO) -> None:
    """Log a progress line on the package logger."""
    logging.getLogger(PACKAGE_LOGGER).log(level, message)
