"""Shared test fixtures and dummy classes."""

from __future__ import annotations

import dataclasses
from pathlib import Path
from typing import Any, Callable, Sequence

import pytest

from ratio_sync.backends.base import Backend, BackendError, RunMode, UnsupportedOperation
from ratio_sync.config import Settings
from ratio_sync.models.events import InstanceEvent
from ratio_sync.models.grid import GridActionError, GridActionResult, ImportConfig, ImportResult
from ratio_sync.models.summary import InstanceSummary
from ratio_sync.persistence import LocalStoragePersistence, SessionPersistence
from ratio_sync.presets import PresetStore
from ratio_sync.storage import LocalStorage

GRID_STATES = {
    "start": "running",
    "stop": "stopped",
    "pause": "paused",
    "resume": "running",
}


def row(instance_id: str, name: str = "", state: str = "stopped", **kw: Any) -> InstanceSummary:
    """Grid summary row with sensible defaults."""
    return InstanceSummary(id=instance_id, name=name or f"torrent-{instance_id}", state=state, **kw)


def server_instance(
    instance_id: str,
    name: str = "ubuntu.iso",
    state: str = "Stopped",
    source: str = "manual",
    **config: Any,
) -> dict[str, Any]:
    """Full backend instance as returned by ``list_instances``."""
    base_config = {
        "client_type": "transmission",
        "client_version": "4.0.5",
        "upload_rate": 75.0,
        "download_rate": 150.0,
        "port": 51413,
        "completion_percent": 100.0,
        "initial_uploaded": 0,
        "initial_downloaded": 0,
        "randomize_rates": False,
        "random_range_percent": 10.0,
        "stop_at_ratio": None,
        "stop_at_uploaded": None,
        "stop_at_downloaded": None,
        "stop_at_seed_time": None,
    }
    base_config.update(config)
    return {
        "id": instance_id,
        "source": source,
        "config": base_config,
        "torrent": {"name": name, "info_hash": "ab" * 20},
        "stats": {"uploaded": 3 * 1024 * 1024, "downloaded": 0, "state": state},
    }


class FakeBackend(Backend):
    """In-memory backend recording every call."""

    def __init__(
        self,
        persistence: SessionPersistence,
        mode: RunMode = RunMode.BROWSER,
        listing: bool = False,
        scheduler: bool = False,
    ) -> None:
        super().__init__(persistence)
        self.mode = mode
        self.supports_instance_listing = listing
        self.has_scheduler = scheduler
        self.calls: list[tuple[str, Any]] = []
        self.rows: dict[str, InstanceSummary] = {}
        self.full: dict[str, dict[str, Any]] = {}
        self.torrents: dict[str, dict[str, Any]] = {}
        self.torrent_files: dict[str, dict[str, Any]] = {}
        self.summary_script: list[list[InstanceSummary]] = []
        self.restore_script: list[bool] = []
        self.import_result = ImportResult()
        self.listeners: list[Callable[[InstanceEvent], None]] = []
        self.fail_create = False
        self.fail_delete = False
        self._next_id = 100

    def _record(self, name: str, arg: Any = None) -> None:
        self.calls.append((name, arg))

    def calls_to(self, name: str) -> list[Any]:
        return [arg for call, arg in self.calls if call == name]

    async def list_instances(self) -> list[dict[str, Any]]:
        self._record("list_instances")
        if not self.supports_instance_listing:
            raise UnsupportedOperation("no listing")
        return list(self.full.values())

    async def create_instance(self) -> str:
        self._record("create_instance")
        if self.fail_create:
            raise BackendError("create failed")
        self._next_id += 1
        return str(self._next_id)

    async def delete_instance(self, instance_id: str, force: bool = False) -> None:
        self._record("delete_instance", (instance_id, force))
        if self.fail_delete:
            raise BackendError("instance not found")
        self.rows.pop(instance_id, None)

    async def list_summaries(self) -> list[InstanceSummary]:
        self._record("list_summaries")
        if self.summary_script:
            return self.summary_script.pop(0)
        return list(self.rows.values())

    async def get_instance_torrent(self, instance_id: str) -> dict[str, Any] | None:
        self._record("get_instance_torrent", instance_id)
        if instance_id not in self.torrents:
            raise BackendError("no torrent")
        return self.torrents[instance_id]

    async def load_instance_torrent(self, instance_id: str, path: str | Path) -> dict[str, Any]:
        self._record("load_instance_torrent", (instance_id, str(path)))
        if str(path) not in self.torrent_files:
            raise BackendError("file not found")
        return self.torrent_files[str(path)]

    async def update_stats_only(self, instance_id: str) -> dict[str, Any] | None:
        self._record("update_stats_only", instance_id)
        return {}

    async def _grid(self, action: str, ids: Sequence[str]) -> GridActionResult:
        self._record(f"grid_{action}", list(ids))
        result = GridActionResult()
        for instance_id in ids:
            if instance_id not in self.rows:
                result.failed.append(GridActionError(instance_id, "Instance not found"))
                continue
            if action == "delete":
                del self.rows[instance_id]
            else:
                self.rows[instance_id] = dataclasses.replace(
                    self.rows[instance_id], state=GRID_STATES[action]
                )
            result.succeeded.append(instance_id)
        return result

    async def grid_start(self, ids: Sequence[str]) -> GridActionResult:
        return await self._grid("start", ids)

    async def grid_stop(self, ids: Sequence[str]) -> GridActionResult:
        return await self._grid("stop", ids)

    async def grid_pause(self, ids: Sequence[str]) -> GridActionResult:
        return await self._grid("pause", ids)

    async def grid_resume(self, ids: Sequence[str]) -> GridActionResult:
        return await self._grid("resume", ids)

    async def grid_delete(self, ids: Sequence[str]) -> GridActionResult:
        return await self._grid("delete", ids)

    async def grid_tag(
        self, ids: Sequence[str], add_tags: Sequence[str], remove_tags: Sequence[str]
    ) -> int:
        self._record("grid_tag", (list(ids), list(add_tags), list(remove_tags)))
        return len(ids)

    async def grid_import(self, files: Sequence[str | Path], config: ImportConfig) -> ImportResult:
        self._record("grid_import", (list(files), config))
        return self.import_result

    def listen_to_instance_events(self, callback: Callable[[InstanceEvent], None]):
        self.listeners.append(callback)
        return lambda: self.listeners.remove(callback)

    def emit(self, event: InstanceEvent) -> None:
        for callback in list(self.listeners):
            callback(event)

    async def restoration_complete(self) -> bool:
        self._record("restoration_complete")
        if self.restore_script:
            return self.restore_script.pop(0)
        return True


class DummyHost:
    """Desktop host: answers commands from a handler table and records them."""

    def __init__(self, handlers: dict[str, Callable[..., Any]] | None = None) -> None:
        self.handlers = handlers or {}
        self.invoked: list[tuple[str, dict[str, Any]]] = []
        self.listeners: dict[str, list[Callable[[Any], None]]] = {}
        self.config: dict[str, Any] = {"theme": "dark"}

    async def invoke(self, command: str, **args: Any) -> Any:
        self.invoked.append((command, args))
        if command == "get_config" and command not in self.handlers:
            return dict(self.config)
        if command == "update_config" and command not in self.handlers:
            self.config = dict(args["config"])
            return None
        if command not in self.handlers:
            raise RuntimeError(f"unknown command {command}")
        return self.handlers[command](**args)

    def listen(self, event: str, handler: Callable[[Any], None]) -> Callable[[], None]:
        self.listeners.setdefault(event, []).append(handler)
        return lambda: self.listeners[event].remove(handler)

    def fire(self, event: str, payload: Any) -> None:
        for handler in list(self.listeners.get(event, [])):
            handler(payload)


class DummyEngine:
    """In-process simulation engine stand-in."""

    def __init__(self) -> None:
        self.next_id = 0
        self.deleted: list[str] = []
        self.states: dict[str, str] = {}

    async def create_instance(self) -> int:
        self.next_id += 1
        self.states[str(self.next_id)] = "stopped"
        return self.next_id

    async def delete_instance(self, instance_id: str) -> None:
        if instance_id not in self.states:
            raise KeyError(instance_id)
        del self.states[instance_id]
        self.deleted.append(instance_id)

    async def list_summaries(self) -> list[dict[str, Any]]:
        return [{"id": i, "name": f"t{i}", "state": s} for i, s in self.states.items()]

    async def get_instance_torrent(self, instance_id: str) -> dict[str, Any] | None:
        return None

    async def update_stats_only(self, instance_id: str) -> dict[str, Any]:
        return {}

    async def grid_start(self, ids: list[str]) -> dict[str, Any]:
        ok = [i for i in ids if i in self.states]
        for i in ok:
            self.states[i] = "running"
        return {"succeeded": ok, "failed": [{"id": i, "error": "missing"} for i in ids if i not in ok]}

    async def grid_delete(self, ids: list[str]) -> dict[str, Any]:
        ok = [i for i in ids if i in self.states]
        for i in ok:
            del self.states[i]
        return {"succeeded": ok, "failed": []}


@pytest.fixture
def storage(tmp_path: Path) -> LocalStorage:
    return LocalStorage(tmp_path / "local-storage.json")


@pytest.fixture
def presets(storage: LocalStorage) -> PresetStore:
    return PresetStore(storage)


@pytest.fixture
def fast_settings(tmp_path: Path) -> Settings:
    return Settings(
        RUN_MODE="browser",
        SERVER_URL="http://server.test/api",
        SERVER_TOKEN=None,
        HTTP_TIMEOUT_S=1.0,
        GRID_POLL_INTERVAL_S=0.01,
        DEFAULT_POLL_INTERVAL_S=0.01,
        EVENT_DEBOUNCE_S=0.05,
        RESTORE_RETRIES=5,
        RESTORE_RETRY_DELAY_S=0.0,
        RESTORE_TIMEOUT_S=0.2,
        DATA_DIR=tmp_path,
    )


@pytest.fixture
def backend(storage: LocalStorage) -> FakeBackend:
    return FakeBackend(LocalStoragePersistence(storage))
