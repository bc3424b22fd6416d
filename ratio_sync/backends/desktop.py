"""Embedded desktop host adapter.

The host is any object with::

    async def invoke(command: str, **args) -> Any
    def listen(event: str, handler: Callable[[Any], None]) -> Callable[[], None]

Commands raise on failure; the adapter wraps every failure in
``BackendError``.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Callable, Protocol, Sequence

from ..models.events import EVENT_CREATED, EVENT_DELETED, EVENT_STATE_CHANGED, InstanceEvent
from ..models.grid import GridActionResult, ImportConfig, ImportResult
from ..models.session import SavedInstance
from ..models.summary import InstanceSummary
from ..persistence import DesktopConfigPersistence, SessionPersistence
from .base import Backend, BackendError, EventCallback, RunMode, Unsubscribe
from .server import import_config_payload

logger = logging.getLogger(__name__)

HOST_EVENTS: dict[str, str] = {
    "instance-created": EVENT_CREATED,
    "instance-deleted": EVENT_DELETED,
    "instance-state-changed": EVENT_STATE_CHANGED,
}


class DesktopHost(Protocol):
    async def invoke(self, command: str, **args: Any) -> Any: ...

    def listen(self, event: str, handler: Callable[[Any], None]) -> Callable[[], None]: ...


class DesktopBackend(Backend):
    mode = RunMode.DESKTOP

    def __init__(self, host: DesktopHost, persistence: SessionPersistence | None = None) -> None:
        self.host = host
        if persistence is None:
            persistence = DesktopConfigPersistence(self.get_config, self.update_config)
        super().__init__(persistence)

    async def _invoke(self, command: str, **args: Any) -> Any:
        try:
            return await self.host.invoke(command, **args)
        except BackendError:
            raise
        except Exception as e:
            raise BackendError(f"{command} failed: {e}") from e

    async def get_config(self) -> dict[str, Any]:
        return dict(await self._invoke("get_config") or {})

    async def update_config(self, config: dict[str, Any]) -> None:
        await self._invoke("update_config", config=config)

    async def create_instance(self) -> str:
        return str(await self._invoke("create_instance"))

    async def delete_instance(self, instance_id: str, force: bool = False) -> None:
        await self._invoke("delete_instance", instance_id=instance_id)

    async def list_summaries(self) -> list[InstanceSummary]:
        rows = await self._invoke("list_summaries") or []
        return [InstanceSummary.from_api(row) for row in rows]

    async def get_instance_torrent(self, instance_id: str) -> dict[str, Any] | None:
        return await self._invoke("get_instance_torrent", instance_id=instance_id)

    async def load_instance_torrent(self, instance_id: str, path: str | Path) -> dict[str, Any]:
        return await self._invoke("load_instance_torrent", instance_id=instance_id, path=str(path))

    async def update_stats_only(self, instance_id: str) -> dict[str, Any] | None:
        return await self._invoke("update_stats_only", instance_id=instance_id)

    async def grid_start(self, ids: Sequence[str]) -> GridActionResult:
        return GridActionResult.from_api(await self._invoke("grid_start", ids=list(ids)))

    async def grid_stop(self, ids: Sequence[str]) -> GridActionResult:
        return GridActionResult.from_api(await self._invoke("grid_stop", ids=list(ids)))

    async def grid_pause(self, ids: Sequence[str]) -> GridActionResult:
        return GridActionResult.from_api(await self._invoke("grid_pause", ids=list(ids)))

    async def grid_resume(self, ids: Sequence[str]) -> GridActionResult:
        return GridActionResult.from_api(await self._invoke("grid_resume", ids=list(ids)))

    async def grid_delete(self, ids: Sequence[str]) -> GridActionResult:
        return GridActionResult.from_api(await self._invoke("grid_delete", ids=list(ids)))

    async def grid_tag(
        self, ids: Sequence[str], add_tags: Sequence[str], remove_tags: Sequence[str]
    ) -> int:
        data = await self._invoke(
            "grid_tag", ids=list(ids), add_tags=list(add_tags), remove_tags=list(remove_tags)
        )
        if isinstance(data, dict):
            return int(data.get("updated") or 0)
        return int(data or 0)

    async def grid_import(self, files: Sequence[str | Path], config: ImportConfig) -> ImportResult:
        data = await self._invoke(
            "grid_import_files",
            paths=[str(f) for f in files],
            config=import_config_payload(config),
        )
        return ImportResult.from_api(data)

    async def grid_import_folder(self, path: str, config: ImportConfig) -> ImportResult:
        data = await self._invoke(
            "grid_import_folder", path=path, config=import_config_payload(config)
        )
        return ImportResult.from_api(data)

    async def restoration_complete(self) -> bool:
        # Hosts without the command restore synchronously before the UI starts.
        try:
            return bool(await self._invoke("is_restore_complete"))
        except BackendError:
            return True

    async def reattach_torrent(self, instance_id: str, saved: SavedInstance) -> dict[str, Any]:
        if not saved.torrent_path:
            raise BackendError("saved session has no torrent path")
        return await self.load_instance_torrent(instance_id, saved.torrent_path)

    def listen_to_instance_events(self, callback: EventCallback) -> Unsubscribe:
        unlisteners: list[Callable[[], None]] = []
        for host_event, event_type in HOST_EVENTS.items():

            def handler(payload: Any, event_type: str = event_type) -> None:
                data = dict(payload) if isinstance(payload, dict) else {"id": payload}
                data["type"] = event_type
                try:
                    callback(InstanceEvent.from_api(data))
                except Exception:
                    logger.exception("Instance event callback failed")

            unlisteners.append(self.host.listen(host_event, handler))

        def unsubscribe() -> None:
            while unlisteners:
                unlisteners.pop()()

        return unsubscribe
