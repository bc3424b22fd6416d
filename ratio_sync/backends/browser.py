"""Browser-only runtime adapter around an in-process simulation engine.

The engine has no push channel of its own, so the adapter emits lifecycle
events to its listeners after each successful mutating call. Session
persistence goes to local storage with the torrent embedded.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Protocol, Sequence

from ..models.events import EVENT_CREATED, EVENT_DELETED, EVENT_STATE_CHANGED, InstanceEvent
from ..models.grid import GridActionResult, ImportConfig, ImportResult
from ..models.summary import InstanceSummary
from ..persistence import SessionPersistence
from .base import Backend, BackendError, EventCallback, RunMode, Unsubscribe
from .server import import_config_payload

logger = logging.getLogger(__name__)


class Engine(Protocol):
    async def create_instance(self) -> Any: ...
    async def delete_instance(self, instance_id: str) -> None: ...
    async def list_summaries(self) -> list[dict[str, Any]]: ...
    async def get_instance_torrent(self, instance_id: str) -> dict[str, Any] | None: ...
    async def load_instance_torrent(self, instance_id: str, data: bytes) -> dict[str, Any]: ...
    async def update_stats_only(self, instance_id: str) -> dict[str, Any] | None: ...
    async def grid_start(self, ids: list[str]) -> dict[str, Any]: ...
    async def grid_stop(self, ids: list[str]) -> dict[str, Any]: ...
    async def grid_pause(self, ids: list[str]) -> dict[str, Any]: ...
    async def grid_resume(self, ids: list[str]) -> dict[str, Any]: ...
    async def grid_delete(self, ids: list[str]) -> dict[str, Any]: ...
    async def grid_tag(self, ids: list[str], add_tags: list[str], remove_tags: list[str]) -> Any: ...
    async def grid_import(self, files: list[tuple[str, bytes]], config: dict[str, Any]) -> dict[str, Any]: ...


class BrowserBackend(Backend):
    mode = RunMode.BROWSER

    def __init__(self, engine: Engine, persistence: SessionPersistence) -> None:
        super().__init__(persistence)
        self.engine = engine
        self._listeners: list[EventCallback] = []

    async def _call(self, method: str, *args: Any) -> Any:
        try:
            return await getattr(self.engine, method)(*args)
        except BackendError:
            raise
        except Exception as e:
            raise BackendError(f"engine {method} failed: {e}") from e

    def _emit(self, event_type: str, instance_id: str | None = None) -> None:
        event = InstanceEvent(type=event_type, id=instance_id)
        for callback in list(self._listeners):
            try:
                callback(event)
            except Exception:
                logger.exception("Instance event callback failed")

    async def create_instance(self) -> str:
        instance_id = str(await self._call("create_instance"))
        self._emit(EVENT_CREATED, instance_id)
        return instance_id

    async def delete_instance(self, instance_id: str, force: bool = False) -> None:
        await self._call("delete_instance", instance_id)
        self._emit(EVENT_DELETED, instance_id)

    async def list_summaries(self) -> list[InstanceSummary]:
        rows = await self._call("list_summaries") or []
        return [InstanceSummary.from_api(row) for row in rows]

    async def get_instance_torrent(self, instance_id: str) -> dict[str, Any] | None:
        return await self._call("get_instance_torrent", instance_id)

    async def load_instance_torrent(self, instance_id: str, path: str | Path) -> dict[str, Any]:
        try:
            data = await asyncio.to_thread(Path(path).read_bytes)
        except OSError as e:
            raise BackendError(f"Cannot read torrent file {path}: {e}") from e
        return await self._call("load_instance_torrent", instance_id, data)

    async def update_stats_only(self, instance_id: str) -> dict[str, Any] | None:
        return await self._call("update_stats_only", instance_id)

    async def _grid_action(self, method: str, ids: Sequence[str], event_type: str) -> GridActionResult:
        result = GridActionResult.from_api(await self._call(method, list(ids)))
        for instance_id in result.succeeded:
            self._emit(event_type, instance_id)
        return result

    async def grid_start(self, ids: Sequence[str]) -> GridActionResult:
        return await self._grid_action("grid_start", ids, EVENT_STATE_CHANGED)

    async def grid_stop(self, ids: Sequence[str]) -> GridActionResult:
        return await self._grid_action("grid_stop", ids, EVENT_STATE_CHANGED)

    async def grid_pause(self, ids: Sequence[str]) -> GridActionResult:
        return await self._grid_action("grid_pause", ids, EVENT_STATE_CHANGED)

    async def grid_resume(self, ids: Sequence[str]) -> GridActionResult:
        return await self._grid_action("grid_resume", ids, EVENT_STATE_CHANGED)

    async def grid_delete(self, ids: Sequence[str]) -> GridActionResult:
        return await self._grid_action("grid_delete", ids, EVENT_DELETED)

    async def grid_tag(
        self, ids: Sequence[str], add_tags: Sequence[str], remove_tags: Sequence[str]
    ) -> int:
        data = await self._call("grid_tag", list(ids), list(add_tags), list(remove_tags))
        if isinstance(data, dict):
            return int(data.get("updated") or 0)
        return int(data or 0)

    async def grid_import(self, files: Sequence[str | Path], config: ImportConfig) -> ImportResult:
        payload: list[tuple[str, bytes]] = []
        for item in files:
            path = Path(item)
            try:
                payload.append((path.name, await asyncio.to_thread(path.read_bytes)))
            except OSError as e:
                raise BackendError(f"Cannot read torrent file {path}: {e}") from e
        result = ImportResult.from_api(
            await self._call("grid_import", payload, import_config_payload(config))
        )
        for imported in result.imported:
            self._emit(EVENT_CREATED, imported.id)
        return result

    def listen_to_instance_events(self, callback: EventCallback) -> Unsubscribe:
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe
