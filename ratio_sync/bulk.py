"""Bulk action coordinator for the grid view.

Each action narrows the visible selection to ids whose state permits it,
skips the backend entirely when nothing is left, writes a placeholder state
for start/stop, calls the batch endpoint, re-fetches summaries and then
pushes the confirmed flags into the instance store.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Sequence

from .backends.base import Backend, UnsupportedOperation
from .convert import flags_for_summary_state
from .grid_store import GridStore
from .models.grid import GridActionResult, ImportConfig, ImportResult
from .models.summary import (
    STATE_IDLE,
    STATE_PAUSED,
    STATE_RUNNING,
    STATE_STARTING,
    STATE_STOPPED,
    STATE_STOPPING,
)
from .reconcile import Reconciler

logger = logging.getLogger(__name__)

ACTION_START = "start"
ACTION_STOP = "stop"
ACTION_PAUSE = "pause"
ACTION_RESUME = "resume"

# action -> states it may be applied to
TRANSITIONS: dict[str, frozenset[str]] = {
    ACTION_START: frozenset({STATE_STOPPED}),
    ACTION_STOP: frozenset({STATE_RUNNING, STATE_IDLE, STATE_PAUSED, STATE_STARTING}),
    ACTION_PAUSE: frozenset({STATE_RUNNING, STATE_IDLE}),
    ACTION_RESUME: frozenset({STATE_PAUSED}),
}

PLACEHOLDERS: dict[str, str] = {
    ACTION_START: STATE_STARTING,
    ACTION_STOP: STATE_STOPPING,
}

# (is_running, is_paused) expected after a successful action
EXPECTED_FLAGS: dict[str, tuple[bool, bool]] = {
    ACTION_START: (True, False),
    ACTION_STOP: (False, False),
    ACTION_PAUSE: (True, True),
    ACTION_RESUME: (True, False),
}


class BulkActionCoordinator:
    def __init__(self, grid: GridStore, reconciler: Reconciler, backend: Backend | None = None) -> None:
        self.grid = grid
        self.reconciler = reconciler
        self.backend = backend or grid.backend

    async def _call(self, action: str, ids: Sequence[str]) -> GridActionResult:
        return await getattr(self.backend, f"grid_{action}")(list(ids))

    def _propagate(self, action: str, ids: Sequence[str]) -> None:
        for instance_id in ids:
            state = self.grid.state_of(instance_id)
            if state in (None, STATE_STARTING, STATE_STOPPING):
                is_running, is_paused = EXPECTED_FLAGS[action]
                state = None
            else:
                is_running, is_paused = flags_for_summary_state(state)
            self.reconciler.sync_instance_state(
                instance_id, is_running=is_running, is_paused=is_paused, state=state
            )

    async def _run(self, action: str, ids: Sequence[str]) -> GridActionResult | None:
        eligible = self.grid.eligible(ids, TRANSITIONS[action])
        if not eligible:
            logger.debug("No instances eligible for %s among %d selected", action, len(ids))
            return None
        placeholder = PLACEHOLDERS.get(action)
        if placeholder:
            self.grid.mark_transitional(eligible, placeholder)
        try:
            result = await self._call(action, eligible)
        finally:
            await self.grid.fetch_summaries()
        if result.failed:
            logger.warning(
                "%s failed for %d instance(s): %s",
                action,
                len(result.failed),
                ", ".join(f"{f.id}: {f.error}" for f in result.failed),
            )
        self._propagate(action, eligible)
        return result

    async def start(self) -> GridActionResult | None:
        return await self._run(ACTION_START, self.grid.selected_ids())

    async def stop(self) -> GridActionResult | None:
        return await self._run(ACTION_STOP, self.grid.selected_ids())

    async def pause(self) -> GridActionResult | None:
        return await self._run(ACTION_PAUSE, self.grid.selected_ids())

    async def resume(self) -> GridActionResult | None:
        return await self._run(ACTION_RESUME, self.grid.selected_ids())

    async def _delete(self, ids: Sequence[str]) -> GridActionResult | None:
        if not ids:
            return None
        try:
            result = await self.backend.grid_delete(list(ids))
        finally:
            # Purge locally even if the backend no longer knows some ids.
            self.grid.remove_ids(ids)
            for instance_id in ids:
                await self.reconciler.store.remove_instance_from_store(instance_id)
            await self.grid.fetch_summaries()
        return result

    async def delete(self) -> GridActionResult | None:
        return await self._delete(self.grid.selected_ids())

    async def tag(
        self, add_tags: Sequence[str] = (), remove_tags: Sequence[str] = ()
    ) -> int | None:
        ids = self.grid.selected_ids()
        if not ids:
            return None
        try:
            return await self.backend.grid_tag(ids, list(add_tags), list(remove_tags))
        finally:
            await self.grid.fetch_summaries()

    # Single-row actions skip eligibility checks: the row menu only offers
    # actions valid for the row's state.
    async def _run_one(self, action: str, instance_id: str) -> GridActionResult:
        placeholder = PLACEHOLDERS.get(action)
        if placeholder:
            self.grid.mark_transitional([instance_id], placeholder)
        try:
            result = await self._call(action, [instance_id])
        finally:
            await self.grid.fetch_summaries()
        self._propagate(action, [instance_id])
        return result

    async def start_instance(self, instance_id: str) -> GridActionResult:
        return await self._run_one(ACTION_START, instance_id)

    async def stop_instance(self, instance_id: str) -> GridActionResult:
        return await self._run_one(ACTION_STOP, instance_id)

    async def pause_instance(self, instance_id: str) -> GridActionResult:
        return await self._run_one(ACTION_PAUSE, instance_id)

    async def resume_instance(self, instance_id: str) -> GridActionResult:
        return await self._run_one(ACTION_RESUME, instance_id)

    async def delete_instance(self, instance_id: str) -> GridActionResult | None:
        return await self._delete([instance_id])

    async def import_files(
        self, files: Sequence[str | Path], config: ImportConfig | None = None
    ) -> ImportResult:
        if not files:
            return ImportResult(errors=["No files selected"])
        config = config or ImportConfig()
        try:
            result = await self.backend.grid_import(files, config)
        except UnsupportedOperation as e:
            return ImportResult(errors=[str(e)])
        return await self._after_import(result, config)

    async def import_folder(self, path: str, config: ImportConfig | None = None) -> ImportResult:
        if not path or not path.strip():
            return ImportResult(errors=["No folder selected"])
        config = config or ImportConfig()
        try:
            result = await self.backend.grid_import_folder(path.strip(), config)
        except UnsupportedOperation as e:
            return ImportResult(errors=[str(e)])
        return await self._after_import(result, config)

    async def _after_import(self, result: ImportResult, config: ImportConfig) -> ImportResult:
        if result.imported:
            logger.info("Imported %d instance(s)", len(result.imported))
            await self.reconciler.sync_imported_instances(result.imported, config)
        await self.grid.fetch_summaries()
        return result
