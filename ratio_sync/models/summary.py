"""Grid summary row dataclass."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

STATE_STARTING = "starting"
STATE_RUNNING = "running"
STATE_IDLE = "idle"
STATE_PAUSED = "paused"
STATE_STOPPING = "stopping"
STATE_STOPPED = "stopped"

LIFECYCLE_STATES = (
    STATE_STARTING,
    STATE_RUNNING,
    STATE_IDLE,
    STATE_PAUSED,
    STATE_STOPPING,
    STATE_STOPPED,
)


def _pick(data: Mapping[str, Any], camel: str, snake: str, default: Any = None) -> Any:
    if camel in data:
        return data[camel]
    return data.get(snake, default)


@dataclass(frozen=True)
class InstanceSummary:
    id: str
    name: str
    state: str
    tags: tuple[str, ...] = ()
    info_hash: str = ""
    total_size: int = 0
    uploaded: int = 0
    downloaded: int = 0
    current_upload_rate: float = 0.0
    current_download_rate: float = 0.0
    torrent_completion: float = 0.0
    seeders: int = 0
    leechers: int = 0
    source: str = "manual"

    @classmethod
    def from_api(cls, data: Mapping[str, Any]) -> "InstanceSummary":
        """Build a row from a backend summary (camelCase or snake_case keys)."""
        return cls(
            id=str(data.get("id", "")),
            name=str(data.get("name") or ""),
            state=str(data.get("state") or STATE_STOPPED).lower(),
            tags=tuple(data.get("tags") or ()),
            info_hash=str(_pick(data, "infoHash", "info_hash", "") or ""),
            total_size=int(_pick(data, "totalSize", "total_size", 0) or 0),
            uploaded=int(data.get("uploaded") or 0),
            downloaded=int(data.get("downloaded") or 0),
            current_upload_rate=float(
                _pick(data, "currentUploadRate", "current_upload_rate", 0.0) or 0.0
            ),
            current_download_rate=float(
                _pick(data, "currentDownloadRate", "current_download_rate", 0.0) or 0.0
            ),
            torrent_completion=float(
                _pick(data, "torrentCompletion", "torrent_completion", 0.0) or 0.0
            ),
            seeders=int(data.get("seeders") or 0),
            leechers=int(data.get("leechers") or 0),
            source=str(data.get("source") or "manual"),
        )
