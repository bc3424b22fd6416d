"""Instance record dataclass used by the standard (single-instance) view."""

from __future__ import annotations

from dataclasses import dataclass, fields
from typing import Any, Mapping

SOURCE_MANUAL = "manual"
SOURCE_WATCH_FOLDER = "watch_folder"


@dataclass
class InstanceRecord:
    """One simulated transfer session as the standard view sees it.

    Byte counters are whole megabytes, stop thresholds are gigabytes and
    hours, rates are KB/s. ``status_*`` is a projection of the runtime flags
    and never persisted.
    """

    id: str

    # Torrent / runtime state
    torrent: dict[str, Any] | None = None
    torrent_path: str = ""
    stats: dict[str, Any] | None = None
    is_running: bool = False
    is_paused: bool = False
    source: str = SOURCE_MANUAL

    # Carried across sessions, not user-editable
    cumulative_uploaded: int = 0
    cumulative_downloaded: int = 0

    # Client emulation and rates
    selected_client: str = "qbittorrent"
    selected_client_version: str | None = None
    upload_rate: float = 50
    download_rate: float = 100
    port: int = 6881
    completion_percent: float = 0
    initial_uploaded: int = 0
    initial_downloaded: int = 0
    randomize_rates: bool = True
    random_range_percent: float = 20
    update_interval_seconds: int = 5

    # Stop conditions
    stop_at_ratio_enabled: bool = False
    stop_at_ratio: float = 2.0
    stop_at_uploaded_enabled: bool = False
    stop_at_uploaded_gb: float = 10
    stop_at_downloaded_enabled: bool = False
    stop_at_downloaded_gb: float = 10
    stop_at_seed_time_enabled: bool = False
    stop_at_seed_time_hours: float = 24
    idle_when_no_leechers: bool = False
    idle_when_no_seeders: bool = False

    # Progressive rates
    progressive_rates_enabled: bool = False
    target_upload_rate: float = 100
    target_download_rate: float = 200
    progressive_duration_hours: float = 1

    # UI status projection
    status_message: str = "Select a torrent file to begin"
    status_type: str = "warning"
    status_icon: str | None = None


RECORD_FIELDS: frozenset[str] = frozenset(
    f.name for f in fields(InstanceRecord) if f.name != "id"
)

# User-editable configuration (what a session snapshot carries).
CONFIG_FIELDS: tuple[str, ...] = (
    "selected_client",
    "selected_client_version",
    "upload_rate",
    "download_rate",
    "port",
    "completion_percent",
    "initial_uploaded",
    "initial_downloaded",
    "cumulative_uploaded",
    "cumulative_downloaded",
    "randomize_rates",
    "random_range_percent",
    "update_interval_seconds",
    "stop_at_ratio_enabled",
    "stop_at_ratio",
    "stop_at_uploaded_enabled",
    "stop_at_uploaded_gb",
    "stop_at_downloaded_enabled",
    "stop_at_downloaded_gb",
    "stop_at_seed_time_enabled",
    "stop_at_seed_time_hours",
    "idle_when_no_leechers",
    "idle_when_no_seeders",
    "progressive_rates_enabled",
    "target_upload_rate",
    "target_download_rate",
    "progressive_duration_hours",
)


def create_default_instance(
    instance_id: str, defaults: Mapping[str, Any] | None = None
) -> InstanceRecord:
    """Build a record with built-in defaults overlaid by ``defaults``.

    Keys that are not record fields and ``None`` values are ignored, so
    preset settings and partially saved configurations can be passed as-is.
    """
    known = {
        key: value
        for key, value in (defaults or {}).items()
        if key in RECORD_FIELDS and value is not None
    }
    return InstanceRecord(id=str(instance_id), **known)
