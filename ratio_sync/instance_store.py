"""Instance store backing the standard (single active instance) view.

Holds the canonical list of instance records and the active id. The list is
never empty once ``initialize`` has run: removing the last record swaps in a
freshly created backend instance in the same commit.

Every mutation goes through ``_commit`` which replaces the list and active id
together and then notifies subscribers, so nothing observes a half-applied
change across an ``await``.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from typing import Any, Mapping, Sequence

from . import view
from .backends.base import Backend, BackendError, RunMode
from .config import Settings, settings as default_settings
from .convert import bytes_to_mb, flags_for_summary_state, record_from_server
from .models.instance import (
    RECORD_FIELDS,
    SOURCE_WATCH_FOLDER,
    InstanceRecord,
    create_default_instance,
)
from .models.session import SessionSnapshot
from .models.summary import InstanceSummary
from .observable import Observable
from .presets import PresetStore

logger = logging.getLogger(__name__)


class WatchFolderInstanceError(RuntimeError):
    """Watch-folder instances are removed by deleting their torrent file."""


class InstanceStore(Observable):
    def __init__(
        self,
        backend: Backend,
        presets: PresetStore,
        settings: Settings | None = None,
    ) -> None:
        super().__init__()
        self.backend = backend
        self.presets = presets
        self.settings = settings or default_settings
        self._instances: list[InstanceRecord] = []
        self._active_id: str | None = None
        # Removals may create a replacement; they run one at a time.
        self._removal_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------
    @property
    def instances(self) -> tuple[InstanceRecord, ...]:
        return tuple(self._instances)

    @property
    def active_id(self) -> str | None:
        return self._active_id

    @property
    def active_instance(self) -> InstanceRecord | None:
        return self.get_instance(self._active_id) or (
            self._instances[0] if self._instances else None
        )

    def get_instance(self, instance_id: str | None) -> InstanceRecord | None:
        if instance_id is None:
            return None
        for record in self._instances:
            if record.id == instance_id:
                return record
        return None

    def __contains__(self, instance_id: object) -> bool:
        return any(record.id == instance_id for record in self._instances)

    def __len__(self) -> int:
        return len(self._instances)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _commit(self, instances: list[InstanceRecord], active_id: str | None) -> None:
        ids = {record.id for record in instances}
        if active_id not in ids:
            active_id = instances[0].id if instances else None
        self._instances = instances
        self._active_id = active_id
        self._notify()

    def new_record(
        self, instance_id: str, overrides: Mapping[str, Any] | None = None
    ) -> InstanceRecord:
        """Record built from the default preset with ``overrides`` on top."""
        defaults = self.presets.default_settings()
        defaults.update(overrides or {})
        return create_default_instance(instance_id, defaults)

    async def _create_replacement(self) -> InstanceRecord:
        return self.new_record(await self.backend.create_instance())

    # ------------------------------------------------------------------
    # Initialization
    # ------------------------------------------------------------------
    async def initialize(self) -> str | None:
        """Resolve the starting set of instances and return the active id.

        Sources are tried in order: the server's authoritative list, the
        desktop host's own restored instances, the saved session, and finally
        one fresh instance. A failing source falls through to the next one.
        """
        snapshot = await self.backend.restore_session()

        if self.backend.supports_instance_listing:
            try:
                records = await self._restore_from_server()
                if records:
                    logger.info("Restored %d instance(s) from server", len(records))
                    self._commit(records, records[0].id)
                    return self._active_id
            except Exception as e:
                logger.warning("Failed to fetch instances from server, falling back: %s", e)

        if self.backend.mode is RunMode.DESKTOP:
            try:
                records = await self._restore_from_host(snapshot)
                if records:
                    active_idx = snapshot.active_index_for(len(records)) if snapshot else 0
                    logger.info("Restored %d instance(s) from desktop host", len(records))
                    self._commit(records, records[active_idx].id)
                    return self._active_id
            except Exception as e:
                logger.warning("Failed to restore instances from host, falling back: %s", e)

        if snapshot and snapshot.instances:
            try:
                records = await self._recreate_from_snapshot(snapshot)
                active_idx = snapshot.active_index_for(len(records))
                logger.info("Recreated %d instance(s) from saved session", len(records))
                self._commit(records, records[active_idx].id)
                return self._active_id
            except Exception as e:
                logger.warning("Failed to recreate saved session, starting fresh: %s", e)

        record = await self._create_replacement()
        logger.info("Created first instance %s", record.id)
        self._commit([record], record.id)
        return self._active_id

    async def _restore_from_server(self) -> list[InstanceRecord]:
        return [
            record_from_server(inst, view.ORIGIN_SERVER)
            for inst in await self.backend.list_instances()
        ]

    async def _await_host_summaries(self, expect_instances: bool) -> list[InstanceSummary]:
        """Poll summaries while the host may still be restoring.

        Polls up to ``RESTORE_RETRIES`` times when a saved session expects
        instances or the host reports restoration in progress. If the host
        still reports in-progress after that, keeps polling until it finishes
        or ``RESTORE_TIMEOUT_S`` elapses.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.settings.RESTORE_TIMEOUT_S
        retries = max(1, self.settings.RESTORE_RETRIES)
        attempt = 0
        while True:
            summaries = await self.backend.list_summaries()
            if summaries:
                return summaries
            attempt += 1
            complete = await self.backend.restoration_complete()
            if attempt < retries:
                if complete and not expect_instances:
                    return []
            elif complete:
                return []
            elif loop.time() >= deadline:
                logger.warning(
                    "Host restoration still running after %.1fs; continuing without it",
                    self.settings.RESTORE_TIMEOUT_S,
                )
                return []
            await asyncio.sleep(self.settings.RESTORE_RETRY_DELAY_S)

    async def _restore_from_host(self, snapshot: SessionSnapshot | None) -> list[InstanceRecord]:
        saved = list(snapshot.instances) if snapshot else []
        summaries = await self._await_host_summaries(expect_instances=bool(saved))

        records: list[InstanceRecord] = []
        for summary in summaries:
            try:
                torrent = await self.backend.get_instance_torrent(summary.id)
            except BackendError:
                torrent = None

            # Each saved entry may be claimed by one instance only.
            match = next(
                (s for s in saved if s.torrent_name and s.torrent_name == summary.name), None
            )
            if match is not None:
                saved.remove(match)
                defaults = dict(match.settings)
            else:
                defaults = self.presets.default_settings()
            defaults["cumulative_uploaded"] = bytes_to_mb(summary.uploaded)
            defaults["cumulative_downloaded"] = bytes_to_mb(summary.downloaded)

            record = create_default_instance(summary.id, defaults)
            record.source = summary.source
            if torrent:
                record.torrent = torrent
                record.torrent_path = summary.name or torrent.get("name") or ""
                status = view.READY
            else:
                record.torrent_path = summary.name or ""
                status = view.TORRENT_UNAVAILABLE

            record.is_running, record.is_paused = flags_for_summary_state(summary.state)
            status = view.status_for_state(summary.state) or status
            record.status_message, record.status_type, record.status_icon = status
            records.append(record)
        return records

    async def _recreate_from_snapshot(self, snapshot: SessionSnapshot) -> list[InstanceRecord]:
        missing = view.TORRENT_MISSING if self.backend.mode is RunMode.DESKTOP else view.REUPLOAD
        records: list[InstanceRecord] = []
        try:
            for saved in snapshot.instances:
                instance_id = await self.backend.create_instance()
                record = create_default_instance(instance_id, saved.settings)
                records.append(record)
                if not saved.torrent_path:
                    continue
                try:
                    record.torrent = await self.backend.reattach_torrent(instance_id, saved)
                    record.torrent_path = saved.torrent_path
                    status = view.READY
                except BackendError as e:
                    logger.warning("Could not restore torrent %s: %s", saved.torrent_path, e)
                    status = missing
                record.status_message, record.status_type, record.status_icon = status
        except Exception:
            for record in records:
                try:
                    await self.backend.delete_instance(record.id, force=True)
                except Exception as e:
                    logger.warning("Failed to clean up instance %s: %s", record.id, e)
            raise
        return records

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------
    async def add_instance(self, defaults: Mapping[str, Any] | None = None) -> str:
        """Create a backend instance, append it and make it active.

        A backend failure propagates and leaves the store untouched.
        """
        instance_id = await self.backend.create_instance()
        record = self.new_record(instance_id, defaults)
        self._commit([*self._instances, record], instance_id)
        await self.save_session()
        return instance_id

    async def _drop(self, instance_id: str, replacement: InstanceRecord | None) -> None:
        while True:
            remaining = [r for r in self._instances if r.id != instance_id]
            if replacement is not None and replacement.id not in {r.id for r in remaining}:
                remaining.append(replacement)
            if remaining:
                break
            # Other records went away while we were awaiting the backend.
            replacement = await self._create_replacement()

        active_id = self._active_id
        if active_id == instance_id or active_id not in {r.id for r in remaining}:
            active_id = replacement.id if replacement is not None else remaining[0].id
        self._commit(remaining, active_id)

    async def remove_instance(self, instance_id: str, force: bool = False) -> None:
        async with self._removal_lock:
            record = self.get_instance(instance_id)
            if record is not None and record.source == SOURCE_WATCH_FOLDER and not force:
                raise WatchFolderInstanceError(
                    "Cannot delete watch folder instance. "
                    "Delete the torrent file from the watch folder instead."
                )

            replacement = None
            if record is not None and len(self._instances) == 1:
                replacement = await self._create_replacement()

            try:
                await self.backend.delete_instance(instance_id, force)
            except Exception as e:
                logger.warning("Backend delete failed (may be expected after restart): %s", e)

            if record is not None:
                await self._drop(instance_id, replacement)
        await self.save_session()

    async def remove_instance_from_store(self, instance_id: str) -> bool:
        """Drop a record the backend already deleted. Returns False if unknown.

        A delete event and a bulk delete often report the same id; the second
        caller finds it gone and does nothing.
        """
        async with self._removal_lock:
            if instance_id not in self:
                return False
            replacement = None
            if len(self._instances) == 1:
                replacement = await self._create_replacement()
            await self._drop(instance_id, replacement)
            return True

    def insert(self, record: InstanceRecord) -> bool:
        """Append ``record`` unless its id is already present."""
        if record.id in self:
            return False
        self._commit([*self._instances, record], self._active_id)
        return True

    def select_instance(self, instance_id: str) -> None:
        if instance_id == self._active_id or instance_id not in self:
            return
        self._commit(list(self._instances), instance_id)

    def _apply(self, record: InstanceRecord, updates: Mapping[str, Any]) -> InstanceRecord | None:
        unknown = set(updates) - RECORD_FIELDS
        if unknown:
            logger.warning("Ignoring unknown instance fields: %s", ", ".join(sorted(unknown)))
        changed = {
            key: value
            for key, value in updates.items()
            if key in RECORD_FIELDS and getattr(record, key) != value
        }
        if not changed:
            return None
        return dataclasses.replace(record, **changed)

    def update_instance(self, instance_id: str, **updates: Any) -> bool:
        """Apply field updates; returns False (and stays silent) if nothing differs."""
        return self.update_many({instance_id: updates})

    def update_many(self, updates: Mapping[str, Mapping[str, Any]]) -> bool:
        changed = False
        result: list[InstanceRecord] = []
        for record in self._instances:
            patch = updates.get(record.id)
            new = self._apply(record, patch) if patch else None
            if new is not None:
                changed = True
                result.append(new)
            else:
                result.append(record)
        if changed:
            self._commit(result, self._active_id)
        return changed

    def update_active_instance(self, **updates: Any) -> bool:
        if self._active_id is None:
            return False
        return self.update_instance(self._active_id, **updates)

    async def save_session(self) -> bool:
        return await self.backend.persist_session(self._instances, self._active_id)

    def ids(self) -> Sequence[str]:
        return [record.id for record in self._instances]
