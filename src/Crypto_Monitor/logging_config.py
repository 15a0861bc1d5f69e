"""Logging setup shared by the ``crypto-monitor`` CLI and the web server."""

from __future__ import annotations

import logging
import os
from typing import Final

LOG_FORMAT: Final[str] = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"

# LOG_LEVEL_<KEY> env var -> package logger it controls
SUBSYSTEM_LOGGERS: Final[dict[str, str]] = {
    "SERVICES": "Crypto_Monitor.services",
    "WEB": "Crypto_Monitor.web",
    "DATA": "Crypto_Monitor.data",
}

# Third-party loggers that repeat what our own code already logs
_QUIET_THIRD_PARTY: Final[dict[str, int]] = {
    "uvicorn.access": logging.WARNING,  # RequestLoggingMiddleware covers requests
    "httpx": logging.WARNING,  # RateLimiter logs every upstream call
    "aiosqlite": logging.INFO,  # logs each statement at DEBUG
}


def _resolve_level(name: str | None) -> int | None:
    """Map a level name such as ``"debug"`` to its number; None if unknown."""
    if not name:
        return None
    level = logging.getLevelName(name.strip().upper())
    return level if isinstance(level, int) else None


def configure_logging(
    *,
    level: str = "",
    verbose: bool = False,
    quiet: bool = False,
) -> None:
    """Configure the root logger for a CLI run or the server process.

    Precedence: ``verbose`` > ``quiet`` > ``level`` > ``LOG_LEVEL`` > INFO.
    ``force=True`` replaces handlers installed earlier (e.g. by uvicorn).
    ``LOG_LEVEL_SERVICES``, ``LOG_LEVEL_WEB`` and ``LOG_LEVEL_DATA`` tune one
    subsystem without touching the rest.
    """
    if verbose:
        effective = logging.DEBUG
    elif quiet:
        effective = logging.WARNING
    else:
        effective = (
            _resolve_level(level) or _resolve_level(os.environ.get("LOG_LEVEL")) or logging.INFO
        )

    logging.basicConfig(level=effective, format=LOG_FORMAT, force=True)

    for logger_name, floor in _QUIET_THIRD_PARTY.items():
        logging.getLogger(logger_name).setLevel(max(floor, effective))

    for key, logger_name in SUBSYSTEM_LOGGERS.items():
        override = _resolve_level(os.environ.get(f"LOG_LEVEL_{key}"))
        if override is not None:
            logging.getLogger(logger_name).setLevel(override)
