"""Session persistence: save and restore per-instance configuration.

Two substrates are supported:

- ``DesktopConfigPersistence`` writes an ``instances`` array into the desktop
  host's config object through its get/update config commands. Only the
  torrent path is stored; the host can re-open it on the next start.
- ``LocalStoragePersistence`` writes a JSON document under its own
  local-storage key and embeds the parsed torrent, since there is no path
  that survives a browser session.

Both store byte counters in bytes (from whole megabytes) and thresholds in
the units the record uses. Loading treats every field as optional.
"""

from __future__ import annotations

import abc
import logging
from typing import Any, Awaitable, Callable, Iterable, Mapping

from .convert import bytes_to_mb, mb_to_bytes
from .locks import SingleFlight
from .models.instance import InstanceRecord
from .models.session import SavedInstance, SessionSnapshot
from .storage import LocalStorage

logger = logging.getLogger(__name__)

SESSION_KEY = "session"

# record field -> (persisted key, encode, decode)
_FIELD_MAP: tuple[tuple[str, str, Callable[[Any], Any], Callable[[Any], Any]], ...] = (
    ("selected_client", "selected_client", str, str),
    ("selected_client_version", "selected_client_version", lambda v: v, lambda v: v),
    ("upload_rate", "upload_rate", float, float),
    ("download_rate", "download_rate", float, float),
    ("port", "port", int, int),
    ("completion_percent", "completion_percent", float, float),
    ("initial_uploaded", "initial_uploaded", mb_to_bytes, bytes_to_mb),
    ("initial_downloaded", "initial_downloaded", mb_to_bytes, bytes_to_mb),
    ("cumulative_uploaded", "cumulative_uploaded", mb_to_bytes, bytes_to_mb),
    ("cumulative_downloaded", "cumulative_downloaded", mb_to_bytes, bytes_to_mb),
    ("randomize_rates", "randomize_rates", bool, bool),
    ("random_range_percent", "random_range_percent", float, float),
    ("update_interval_seconds", "update_interval_seconds", int, int),
    ("stop_at_ratio_enabled", "stop_at_ratio_enabled", bool, bool),
    ("stop_at_ratio", "stop_at_ratio", float, float),
    ("stop_at_uploaded_enabled", "stop_at_uploaded_enabled", bool, bool),
    ("stop_at_uploaded_gb", "stop_at_uploaded_gb", float, float),
    ("stop_at_downloaded_enabled", "stop_at_downloaded_enabled", bool, bool),
    ("stop_at_downloaded_gb", "stop_at_downloaded_gb", float, float),
    ("stop_at_seed_time_enabled", "stop_at_seed_time_enabled", bool, bool),
    ("stop_at_seed_time_hours", "stop_at_seed_time_hours", float, float),
    ("idle_when_no_leechers", "idle_when_no_leechers", bool, bool),
    ("idle_when_no_seeders", "idle_when_no_seeders", bool, bool),
    ("progressive_rates_enabled", "progressive_rates_enabled", bool, bool),
    ("target_upload_rate", "target_upload_rate", float, float),
    ("target_download_rate", "target_download_rate", float, float),
    ("progressive_duration_hours", "progressive_duration_hours", float, float),
)


def serialize_instance(record: InstanceRecord, embed_torrent: bool) -> dict[str, Any]:
    torrent = record.torrent or {}
    data: dict[str, Any] = {
        "torrent_path": record.torrent_path or None,
        "torrent_name": torrent.get("name") or None,
    }
    if embed_torrent:
        data["torrent_data"] = record.torrent
    for attr, key, encode, _ in _FIELD_MAP:
        value = getattr(record, attr)
        data[key] = encode(value) if value is not None else None
    return data


def deserialize_instance(data: Mapping[str, Any]) -> SavedInstance:
    settings: dict[str, Any] = {}
    for attr, key, _, decode in _FIELD_MAP:
        value = data.get(key)
        if value is None:
            continue
        try:
            settings[attr] = decode(value)
        except (TypeError, ValueError):
            logger.warning("Ignoring unreadable saved field %s=%r", key, value)
    return SavedInstance(
        settings=settings,
        torrent_path=data.get("torrent_path") or None,
        torrent_name=data.get("torrent_name") or None,
        torrent=data.get("torrent_data") or None,
    )


def build_document(
    instances: Iterable[InstanceRecord], active_id: str | None, embed_torrent: bool
) -> dict[str, Any]:
    records = list(instances)
    active_index = next(
        (idx for idx, record in enumerate(records) if record.id == active_id), -1
    )
    return {
        "instances": [serialize_instance(r, embed_torrent) for r in records],
        "active_instance_id": active_index,
    }


def parse_document(document: Mapping[str, Any] | None) -> SessionSnapshot | None:
    """Inverse of ``build_document``; None when there is nothing to restore."""
    if not document:
        return None
    saved = document.get("instances") or []
    if not isinstance(saved, list) or not saved:
        return None
    active = document.get("active_instance_id")
    return SessionSnapshot(
        instances=[deserialize_instance(item) for item in saved if isinstance(item, Mapping)],
        active_index=active if isinstance(active, int) else None,
    )


class SessionPersistence(abc.ABC):
    """Base adapter; subclasses provide the substrate read/write.

    ``save`` drops a call that overlaps an in-flight save instead of queueing
    it: the mutation that triggered it is already in memory and the next save
    picks it up.
    """

    embeds_torrent = False

    def __init__(self) -> None:
        self._saving = SingleFlight("session save")

    @property
    def is_saving(self) -> bool:
        return self._saving.busy

    async def save(self, instances: Iterable[InstanceRecord], active_id: str | None) -> bool:
        with self._saving.try_acquire() as acquired:
            if not acquired:
                return False
            try:
                document = build_document(instances, active_id, self.embeds_torrent)
                await self._write(document)
                return True
            except Exception:
                logger.exception("Failed to save session")
                return False

    async def load(self) -> SessionSnapshot | None:
        try:
            return parse_document(await self._read())
        except Exception:
            logger.exception("Failed to load session")
            return None

    @abc.abstractmethod
    async def _write(self, document: dict[str, Any]) -> None: ...

    @abc.abstractmethod
    async def _read(self) -> Mapping[str, Any] | None: ...


class DesktopConfigPersistence(SessionPersistence):
    def __init__(
        self,
        get_config: Callable[[], Awaitable[dict[str, Any]]],
        update_config: Callable[[dict[str, Any]], Awaitable[None]],
    ) -> None:
        super().__init__()
        self._get_config = get_config
        self._update_config = update_config
        self.config: dict[str, Any] | None = None

    async def refresh(self) -> dict[str, Any]:
        self.config = dict(await self._get_config() or {})
        return self.config

    async def _write(self, document: dict[str, Any]) -> None:
        config = self.config if self.config is not None else await self.refresh()
        config["instances"] = document["instances"]
        config["active_instance_id"] = document["active_instance_id"]
        await self._update_config(config)

    async def _read(self) -> Mapping[str, Any] | None:
        return await self.refresh()


class LocalStoragePersistence(SessionPersistence):
    embeds_torrent = True

    def __init__(self, storage: LocalStorage, key: str = SESSION_KEY) -> None:
        super().__init__()
        self._storage = storage
        self._key = key

    async def _write(self, document: dict[str, Any]) -> None:
        self._storage.set_json(self._key, document)

    async def _read(self) -> Mapping[str, Any] | None:
        return self._storage.get_json(self._key)
