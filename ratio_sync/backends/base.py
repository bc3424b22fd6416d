"""Backend adapter interface shared by the desktop, server and browser runtimes."""

from __future__ import annotations

import abc
import logging
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Sequence

from ..models.events import InstanceEvent
from ..models.grid import GridActionResult, ImportConfig, ImportResult
from ..models.instance import InstanceRecord
from ..models.session import SavedInstance, SessionSnapshot
from ..models.summary import InstanceSummary
from ..persistence import SessionPersistence

logger = logging.getLogger(__name__)

EventCallback = Callable[[InstanceEvent], None]
Unsubscribe = Callable[[], None]


class BackendError(RuntimeError):
    """Raised when the backend rejects or fails a call."""


class UnsupportedOperation(BackendError):
    """Raised for calls the current runtime cannot serve."""


class RunMode(str, Enum):
    DESKTOP = "desktop"
    SERVER = "server"
    BROWSER = "browser"


class Backend(abc.ABC):
    """One runtime's view of the instance API.

    ``has_scheduler`` is True only where the backend advances simulation
    ticks on its own; elsewhere the grid poller drives ``update_stats_only``.
    ``supports_instance_listing`` tells whether ``list_instances`` returns
    full ``{id, source, config, torrent, stats}`` records.
    """

    mode: RunMode
    has_scheduler = False
    supports_instance_listing = False

    def __init__(self, persistence: SessionPersistence) -> None:
        self.persistence = persistence

    async def list_instances(self) -> list[dict[str, Any]]:
        raise UnsupportedOperation(f"list_instances is not available in {self.mode.value} mode")

    @abc.abstractmethod
    async def create_instance(self) -> str: ...

    @abc.abstractmethod
    async def delete_instance(self, instance_id: str, force: bool = False) -> None: ...

    @abc.abstractmethod
    async def list_summaries(self) -> list[InstanceSummary]: ...

    @abc.abstractmethod
    async def get_instance_torrent(self, instance_id: str) -> dict[str, Any] | None: ...

    @abc.abstractmethod
    async def load_instance_torrent(self, instance_id: str, path: str | Path) -> dict[str, Any]: ...

    @abc.abstractmethod
    async def update_stats_only(self, instance_id: str) -> dict[str, Any] | None: ...

    @abc.abstractmethod
    async def grid_start(self, ids: Sequence[str]) -> GridActionResult: ...

    @abc.abstractmethod
    async def grid_stop(self, ids: Sequence[str]) -> GridActionResult: ...

    @abc.abstractmethod
    async def grid_pause(self, ids: Sequence[str]) -> GridActionResult: ...

    @abc.abstractmethod
    async def grid_resume(self, ids: Sequence[str]) -> GridActionResult: ...

    @abc.abstractmethod
    async def grid_delete(self, ids: Sequence[str]) -> GridActionResult: ...

    @abc.abstractmethod
    async def grid_tag(
        self, ids: Sequence[str], add_tags: Sequence[str], remove_tags: Sequence[str]
    ) -> int:
        """Apply tag changes; returns how many instances were updated."""

    @abc.abstractmethod
    async def grid_import(
        self, files: Sequence[str | Path], config: ImportConfig
    ) -> ImportResult: ...

    async def grid_import_folder(self, path: str, config: ImportConfig) -> ImportResult:
        raise UnsupportedOperation(f"folder import is not available in {self.mode.value} mode")

    @abc.abstractmethod
    def listen_to_instance_events(self, callback: EventCallback) -> Unsubscribe: ...

    async def restoration_complete(self) -> bool:
        """Whether the backend has finished restoring instances from its own state."""
        return True

    async def reattach_torrent(self, instance_id: str, saved: SavedInstance) -> dict[str, Any]:
        """Re-register a saved torrent with a freshly created instance.

        Raises ``BackendError`` if the torrent cannot be restored; the caller
        degrades the record to a warning status.
        """
        if not saved.torrent:
            raise BackendError("saved session has no torrent data")
        return saved.torrent

    async def persist_session(
        self, instances: Sequence[InstanceRecord], active_id: str | None
    ) -> bool:
        return await self.persistence.save(instances, active_id)

    async def restore_session(self) -> SessionSnapshot | None:
        return await self.persistence.load()

    async def aclose(self) -> None:
        return None


__all__ = [
    "Backend",
    "BackendError",
    "EventCallback",
    "RunMode",
    "Unsubscribe",
    "UnsupportedOperation",
]
