"""Unit conversion and backend-record mapping helpers.

Backends speak bytes and seconds; instance records hold whole megabytes,
gigabytes and hours. Everything that crosses that boundary goes through here
so the initialization, merge and import paths agree on one mapping.
"""

from __future__ import annotations

import math
from typing import Any, Mapping

from . import view
from .models.instance import InstanceRecord, SOURCE_MANUAL, create_default_instance
from .models.summary import STATE_IDLE, STATE_PAUSED, STATE_RUNNING

MB = 1024 * 1024
GB = 1024 * 1024 * 1024
HOUR_S = 3600

SERVER_STATE_MAP: dict[str, str] = {
    "Running": STATE_RUNNING,
    "Paused": STATE_PAUSED,
}


def bytes_to_mb(num_bytes: float | None) -> int:
    """Convert bytes to whole megabytes, rounding half up.

    Example:
        >>> bytes_to_mb(1572864)
        2
    """
    return int(math.floor((num_bytes or 0) / MB + 0.5))


def mb_to_bytes(mb: float | None) -> int:
    """Convert a megabyte count to bytes, truncating fractional megabytes."""
    return int(mb or 0) * MB


def map_server_state(state: str | None) -> str:
    """Map a server lifecycle state to a grid state (unknown -> ``idle``)."""
    return SERVER_STATE_MAP.get(state or "", STATE_IDLE)


def settings_from_server_config(config: Mapping[str, Any]) -> dict[str, Any]:
    """Rename server configuration fields into record fields (display units)."""
    stop_uploaded = config.get("stop_at_uploaded")
    stop_downloaded = config.get("stop_at_downloaded")
    stop_seed_time = config.get("stop_at_seed_time")
    return {
        "selected_client": config.get("client_type"),
        "selected_client_version": config.get("client_version"),
        "upload_rate": config.get("upload_rate"),
        "download_rate": config.get("download_rate"),
        "port": config.get("port"),
        "completion_percent": config.get("completion_percent"),
        "initial_uploaded": bytes_to_mb(config.get("initial_uploaded")),
        "initial_downloaded": bytes_to_mb(config.get("initial_downloaded")),
        "randomize_rates": config.get("randomize_rates"),
        "random_range_percent": config.get("random_range_percent"),
        "stop_at_ratio_enabled": config.get("stop_at_ratio") is not None,
        "stop_at_ratio": config.get("stop_at_ratio") or 2.0,
        "stop_at_uploaded_enabled": stop_uploaded is not None,
        "stop_at_uploaded_gb": (stop_uploaded or 0) / GB,
        "stop_at_downloaded_enabled": stop_downloaded is not None,
        "stop_at_downloaded_gb": (stop_downloaded or 0) / GB,
        "stop_at_seed_time_enabled": stop_seed_time is not None,
        "stop_at_seed_time_hours": (stop_seed_time or 0) / HOUR_S,
        "idle_when_no_leechers": bool(config.get("idle_when_no_leechers")),
        "idle_when_no_seeders": bool(config.get("idle_when_no_seeders")),
        "progressive_rates_enabled": bool(config.get("progressive_rates")),
        "target_upload_rate": config.get("target_upload_rate") or 100,
        "target_download_rate": config.get("target_download_rate") or 200,
        "progressive_duration_hours": (config.get("progressive_duration") or HOUR_S)
        / HOUR_S,
    }


def record_from_server(server_inst: Mapping[str, Any], origin: str) -> InstanceRecord:
    """Build a record from a full backend instance (``{id, source, config, torrent, stats}``).

    ``origin`` selects the status wording (see ``view.server_status``).
    """
    config = server_inst.get("config") or {}
    stats = server_inst.get("stats") or {}
    defaults = settings_from_server_config(config)
    defaults["source"] = server_inst.get("source") or SOURCE_MANUAL
    defaults["cumulative_uploaded"] = bytes_to_mb(stats.get("uploaded"))
    defaults["cumulative_downloaded"] = bytes_to_mb(stats.get("downloaded"))

    record = create_default_instance(str(server_inst.get("id")), defaults)
    torrent = server_inst.get("torrent")
    record.torrent = torrent
    record.torrent_path = (torrent or {}).get("name") or ""
    record.stats = dict(stats) if stats else None

    state = map_server_state(stats.get("state"))
    record.is_running = state == STATE_RUNNING
    record.is_paused = state == STATE_PAUSED
    record.status_message, record.status_type, record.status_icon = view.server_status(
        state, origin
    )
    return record


def flags_for_summary_state(state: str | None) -> tuple[bool, bool]:
    """Return ``(is_running, is_paused)`` implied by a grid lifecycle state.

    ``starting``, ``idle`` and ``paused`` all count as running: the backend
    has a live session for them.
    """
    s = (state or "").lower()
    return s in {"running", "starting", "idle", "paused"}, s == "paused"


def to_camel(key: str) -> str:
    """Convert a snake_case key to camelCase.

    Example:
        >>> to_camel("stop_at_uploaded_gb")
        'stopAtUploadedGb'
    """
    head, *rest = key.split("_")
    return head + "".join(part[:1].upper() + part[1:] for part in rest)


def camelize(data: Mapping[str, Any]) -> dict[str, Any]:
    return {to_camel(k): v for k, v in data.items()}
