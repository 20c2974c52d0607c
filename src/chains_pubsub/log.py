"""Logging setup for processes hosting the backend."""

from __future__ import annotations

import logging
import os
import sys
import time
from pathlib import Path

from .config import LOG_LEVEL_ENV_VAR

_ALIASES = {
    "critical": logging.CRITICAL,
    "error": logging.ERROR,
    "warning": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
}


def resolve_log_level(candidate: str | None = None) -> int:
    """Map a level name or number to a logging level.

    Falls back to ``CHAINS_PUBSUB_LOG_LEVEL`` and then INFO.
    """
    for value in (candidate, os.getenv(LOG_LEVEL_ENV_VAR)):
        if not value:
            continue
        stripped = value.strip()
        if not stripped:
            continue
        lower = stripped.lower()
        if lower in _ALIASES:
            return _ALIASES[lower]
        if stripped.isdigit():
            return int(stripped)
    return logging.INFO


def configure_logging(
    level: str | None = None, log_file: str | Path | None = None
) -> list[logging.Handler]:
    """Configure the root logger: stdout plus an optional UTC file log."""
    stream_handler = logging.StreamHandler(sys.stdout)
    stream_handler.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))
    handlers: list[logging.Handler] = [stream_handler]

    if log_file is not None:
        path = Path(log_file).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(path, encoding="utf-8")
        file_formatter = logging.Formatter(
            "%(asctime)sZ %(levelname)s %(name)s: %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S",
        )
        file_formatter.converter = time.gmtime
        file_handler.setFormatter(file_formatter)
        handlers.append(file_handler)

    logging.basicConfig(level=resolve_log_level(level), handlers=handlers, force=True)
    return handlers


__all__ = ["configure_logging", "resolve_log_level"]
