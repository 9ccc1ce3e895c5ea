"""Logging setup for applications embedding SemQL.

Library modules only ever call ``logging.getLogger(__name__)``; nothing is
configured at import time.  Applications that want SemQL's log lines on the
console call :func:`setup_logging` once.
"""

from __future__ import annotations

import logging

from semql.config import get_settings

PACKAGE_LOGGER = "semql"

_HANDLER_NAME = "semql-console"


def _build_formatter() -> logging.Formatter:
    return logging.Formatter(
        fmt="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def setup_logging(level: str | int | None = None) -> logging.Logger:
    """Attach a console handler to the ``semql`` logger.

    Without an explicit ``level`` the ``log_level`` setting (``SEMQL_LOG_LEVEL``)
    is used.

    Safe to call multiple times; the handler is only added once and later
    calls just update the level.
    """
    if level is None:
        level = get_settings().log_level
    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(level.upper() if isinstance(level, str) else level)

    if not any(h.get_name() == _HANDLER_NAME for h in logger.handlers):
        console = logging.StreamHandler()
        console.set_name(_HANDLER_NAME)
        console.setFormatter(_build_formatter())
        logger.addHandler(console)
    return logger
