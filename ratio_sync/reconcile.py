"""Reconciliation: merge backend truth into the instance store.

The backend always wins. Local records are only patched where the backend
reports something different, and the store is never written when nothing
changed, so subscribers only hear about real changes.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping

from . import view
from .backends.base import Backend, BackendError
from .convert import flags_for_summary_state, record_from_server, settings_from_server_config
from .instance_store import InstanceStore
from .models.events import EVENT_CREATED, EVENT_DELETED, InstanceEvent
from .models.grid import ImportConfig, ImportedInstance
from .models.summary import InstanceSummary

logger = logging.getLogger(__name__)


def _find(instances: Iterable[Mapping[str, Any]], instance_id: str) -> Mapping[str, Any] | None:
    return next((inst for inst in instances if str(inst.get("id")) == str(instance_id)), None)


class Reconciler:
    def __init__(self, store: InstanceStore, backend: Backend | None = None) -> None:
        self.store = store
        self.backend = backend or store.backend

    def merge_server_instance(
        self, server_inst: Mapping[str, Any], origin: str = view.ORIGIN_WATCH_FOLDER
    ) -> bool:
        """Insert a full backend instance unless its id is already known.

        Returns True only when a record was added.
        """
        instance_id = str(server_inst.get("id"))
        if instance_id in self.store:
            return False
        return self.store.insert(record_from_server(server_inst, origin))

    async def ensure_instance(
        self, instance_id: str, fallback_summary: InstanceSummary | None = None
    ) -> str | None:
        """Make sure ``instance_id`` is present in the store and return it.

        The backend's full instance list is consulted first; if the runtime
        cannot list instances, a record is built from ``fallback_summary``.
        Returns None only when the id is unknown and no fallback was given.
        """
        existing = self.store.get_instance(instance_id)
        try:
            server_inst = _find(await self.backend.list_instances(), instance_id)
        except BackendError as e:
            logger.debug("Authoritative fetch unavailable for %s: %s", instance_id, e)
            server_inst = None

        if server_inst is not None:
            if existing is not None:
                patch = settings_from_server_config(server_inst.get("config") or {})
                self.store.update_instance(
                    instance_id, **{k: v for k, v in patch.items() if v is not None}
                )
            else:
                self.merge_server_instance(server_inst)
            return instance_id

        if existing is not None:
            return existing.id
        if fallback_summary is None:
            return None

        record = self.store.new_record(instance_id)
        record.source = fallback_summary.source
        record.torrent_path = fallback_summary.name
        record.is_running, record.is_paused = flags_for_summary_state(fallback_summary.state)
        try:
            torrent = await self.backend.get_instance_torrent(instance_id)
        except BackendError:
            torrent = None
        if torrent:
            record.torrent = torrent
            record.torrent_path = fallback_summary.name or torrent.get("name") or ""

        status = view.status_for_state(fallback_summary.state)
        if status is None:
            if record.torrent:
                status = view.READY
            elif fallback_summary.name:
                status = view.FROM_GRID
            else:
                status = view.NO_TORRENT
        record.status_message, record.status_type, record.status_icon = status

        # Another path may have inserted it while we were fetching the torrent.
        self.store.insert(record)
        return instance_id

    def sync_instance_state(
        self,
        instance_id: str,
        is_running: bool | None = None,
        is_paused: bool | None = None,
        stats: dict[str, Any] | None = None,
        state: str | None = None,
    ) -> bool:
        """Project confirmed runtime flags onto one record.

        ``state`` is the grid lifecycle state the flags came from, if known;
        it picks the idling status over the plain running one.
        """
        if instance_id not in self.store:
            return False
        updates: dict[str, Any] = {}
        if is_running is not None:
            updates["is_running"] = is_running
        if is_paused is not None:
            updates["is_paused"] = is_paused
        if stats is not None:
            updates["stats"] = stats
        status = (view.status_for_state(state) if state else None) or view.status_for_flags(
            is_running, is_paused
        )
        if status is not None:
            updates["status_message"], updates["status_type"], updates["status_icon"] = status
        return self.store.update_instance(instance_id, **updates)

    async def sync_all_instance_states(
        self, summaries: Iterable[InstanceSummary] | None = None
    ) -> bool:
        if summaries is None:
            try:
                summaries = await self.backend.list_summaries()
            except BackendError as e:
                logger.warning("Failed to sync instance states: %s", e)
                return False

        by_id = {summary.id: summary for summary in summaries}
        updates: dict[str, dict[str, Any]] = {}
        for record in self.store.instances:
            summary = by_id.get(record.id)
            if summary is None:
                continue
            is_running, is_paused = flags_for_summary_state(summary.state)
            if record.is_running == is_running and record.is_paused == is_paused:
                continue
            message, status_type, icon = view.status_for_state(summary.state) or view.READY
            updates[record.id] = {
                "is_running": is_running,
                "is_paused": is_paused,
                "status_message": message,
                "status_type": status_type,
                "status_icon": icon,
            }
        return self.store.update_many(updates) if updates else False

    async def add_instance_to_store(
        self,
        instance_id: str,
        name: str = "",
        defaults: Mapping[str, Any] | None = None,
        auto_start: bool = False,
    ) -> bool:
        """Insert a record for an imported instance the backend could not list."""
        if instance_id in self.store:
            return False
        record = self.store.new_record(instance_id, defaults)
        try:
            torrent = await self.backend.get_instance_torrent(instance_id)
        except BackendError:
            torrent = None
        if torrent:
            record.torrent = torrent
            record.torrent_path = name or torrent.get("name") or ""
            status = view.READY
        else:
            record.torrent_path = name
            status = view.FROM_GRID if name else view.NO_TORRENT
        if auto_start:
            record.is_running = True
            status = view.RUNNING
        record.status_message, record.status_type, record.status_icon = status
        return self.store.insert(record)

    async def sync_imported_instances(
        self, imported: Iterable[ImportedInstance], config: ImportConfig | None = None
    ) -> None:
        """Bring freshly imported instances into the store.

        Full backend records are preferred since imports may randomize rates;
        the import options are the fallback.
        """
        config = config or ImportConfig()
        pending = {item.id: item for item in imported}
        try:
            for server_inst in await self.backend.list_instances():
                instance_id = str(server_inst.get("id"))
                if instance_id in pending:
                    self.merge_server_instance(server_inst)
                    del pending[instance_id]
        except BackendError as e:
            logger.debug("Imported instances not listable, using import options: %s", e)

        for instance_id, item in pending.items():
            await self.add_instance_to_store(
                instance_id, item.name, config.base_config, auto_start=config.auto_start
            )

    async def apply_event(self, event: InstanceEvent) -> bool:
        """Reflect a pushed lifecycle event in the instance store."""
        if not event.id:
            return False
        if event.type == EVENT_DELETED:
            return await self.store.remove_instance_from_store(event.id)
        if event.type == EVENT_CREATED and self.backend.supports_instance_listing:
            try:
                server_inst = _find(await self.backend.list_instances(), event.id)
            except BackendError as e:
                logger.warning("Failed to fetch created instance %s: %s", event.id, e)
                return False
            if server_inst is not None:
                return self.merge_server_instance(server_inst)
        return False
