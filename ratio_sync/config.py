"""Central configuration for ratio_sync."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

RUN_MODES = ("desktop", "server", "browser")


def _float_env(name: str, default: float) -> float:
    """Read a float from the environment, falling back to ``default``.

    Empty and unparsable values (e.g. ``GRID_POLL_INTERVAL_S=oops``) both
    yield ``default``.
    """
    raw = (os.environ.get(name) or "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _int_env(name: str, default: int) -> int:
    raw = (os.environ.get(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


@dataclass
class Settings:
    """Configuration settings for ratio_sync.

    All settings are loaded from environment variables with sensible defaults.
    """

    RUN_MODE: str
    SERVER_URL: str
    SERVER_TOKEN: str | None
    HTTP_TIMEOUT_S: float
    GRID_POLL_INTERVAL_S: float
    DEFAULT_POLL_INTERVAL_S: float
    EVENT_DEBOUNCE_S: float
    RESTORE_RETRIES: int
    RESTORE_RETRY_DELAY_S: float
    RESTORE_TIMEOUT_S: float
    DATA_DIR: Path


def _read_settings() -> Settings:
    """Read all configuration from environment variables.

    Returns:
        Settings object with all configuration values.

    Note:
        Invalid numeric values fall back to sensible defaults. An unknown
        ``RUN_MODE`` falls back to ``browser``, the runtime with no backend
        requirements.
    """
    run_mode = (os.environ.get("RUN_MODE") or "browser").strip().lower()
    if run_mode not in RUN_MODES:
        run_mode = "browser"

    server_url = os.environ.get("SERVER_URL") or "http://localhost:8080/api"
    server_token = os.environ.get("SERVER_TOKEN") or None

    data_dir_raw = os.environ.get("DATA_DIR") or "~/.local/share/ratio-sync"

    return Settings(
        RUN_MODE=run_mode,
        SERVER_URL=server_url.rstrip("/"),
        SERVER_TOKEN=server_token,
        HTTP_TIMEOUT_S=_float_env("HTTP_TIMEOUT_S", 10.0),
        GRID_POLL_INTERVAL_S=_float_env("GRID_POLL_INTERVAL_S", 3.0),
        DEFAULT_POLL_INTERVAL_S=_float_env("DEFAULT_POLL_INTERVAL_S", 1.0),
        EVENT_DEBOUNCE_S=_float_env("EVENT_DEBOUNCE_S", 0.2),
        RESTORE_RETRIES=_int_env("RESTORE_RETRIES", 5),
        RESTORE_RETRY_DELAY_S=_float_env("RESTORE_RETRY_DELAY_S", 0.3),
        RESTORE_TIMEOUT_S=_float_env("RESTORE_TIMEOUT_S", 10.0),
        DATA_DIR=Path(data_dir_raw).expanduser(),
    )


settings = _read_settings()


def validate_settings(s: Settings | None = None) -> None:
    """Log warnings for settings that will not behave as expected."""
    s = s or settings
    if s.RUN_MODE == "server" and not s.SERVER_URL.startswith(("http://", "https://")):
        logger.warning("SERVER_URL does not look like an http(s) URL: %s", s.SERVER_URL)
    if s.GRID_POLL_INTERVAL_S <= 0:
        logger.warning("GRID_POLL_INTERVAL_S must be positive; polling will spin")
    if s.RESTORE_RETRIES < 1:
        logger.warning("RESTORE_RETRIES < 1; desktop restoration will poll once")
