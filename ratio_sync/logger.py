"""Logging setup for the ratio_sync entrypoint."""

from __future__ import annotations

import logging
import os

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# One request line per poll tick otherwise.
_QUIET_LOGGERS = ("httpx", "httpcore")


def resolve_level(name: str | None) -> int:
    """Map a level name such as ``"debug"`` to its number; unknown names give INFO."""
    level = logging.getLevelName((name or "INFO").strip().upper())
    return level if isinstance(level, int) else logging.INFO


def setup_logging(level: str | None = None) -> int:
    """Configure the root logger once and return the level in effect.

    ``level`` overrides ``LOG_LEVEL``. A handler is only added when the root
    logger has none, so embedding applications keep their own.
    """
    resolved = resolve_level(level or os.environ.get("LOG_LEVEL"))
    root = logging.getLogger()
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT))
        root.addHandler(handler)
    root.setLevel(resolved)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(resolved, logging.WARNING))
    return resolved


__all__ = ["setup_logging", "resolve_level"]
