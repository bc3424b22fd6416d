"""Grid summary store: poll-refreshed rows, filtered view and selection.

Rows are replaced wholesale by each fetch. The only local writes are the
transitional ``starting``/``stopping`` placeholders a bulk action puts in
before the backend confirms, and the next fetch overwrites them.

Selection operations work on the filtered view: select-all, invert and range
selection never reach rows hidden by the current filters.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from typing import Any, Iterable, Sequence

from .backends.base import Backend
from .locks import SingleFlight
from .models.grid import SORT_ASC, SORT_DESC, GridFilters, GridSort
from .models.summary import LIFECYCLE_STATES, STATE_RUNNING, InstanceSummary
from .observable import Observable
from .storage import LocalStorage

logger = logging.getLogger(__name__)

VIEW_MODE_KEY = "view-mode"
VIEW_MODES = ("standard", "grid")

_SORT_ALIASES = {"progress": "torrent_completion"}


def matches_search(summary: InstanceSummary, search: str) -> bool:
    needle = search.lower()
    return (
        needle in summary.name.lower()
        or needle in summary.info_hash.lower()
        or any(needle in tag.lower() for tag in summary.tags)
    )


def matches_state(summary: InstanceSummary, state: str) -> bool:
    return state == "all" or summary.state.lower() == state


def matches_tag(summary: InstanceSummary, tag: str) -> bool:
    return not tag or tag in summary.tags


def filter_summaries(
    summaries: Iterable[InstanceSummary], filters: GridFilters
) -> list[InstanceSummary]:
    """Keep rows matching every active filter (search, state and tag)."""
    return [
        s
        for s in summaries
        if (not filters.search or matches_search(s, filters.search))
        and matches_state(s, filters.state)
        and matches_tag(s, filters.tag)
    ]


def _sort_key(summary: InstanceSummary, column: str) -> Any:
    value = getattr(summary, _SORT_ALIASES.get(column, column), None)
    if isinstance(value, str):
        return value.lower()
    if value is None:
        return ""
    return value


def sort_summaries(summaries: Iterable[InstanceSummary], sort: GridSort) -> list[InstanceSummary]:
    """Stable sort by ``sort.column``; strings compare case-insensitively.

    ``progress`` is accepted as an alias for ``torrent_completion``.
    """
    return sorted(
        summaries,
        key=lambda s: _sort_key(s, sort.column),
        reverse=sort.direction == SORT_DESC,
    )


def filtered_view(
    summaries: Iterable[InstanceSummary], filters: GridFilters, sort: GridSort
) -> list[InstanceSummary]:
    return sort_summaries(filter_summaries(summaries, filters), sort)


def toggle_sort(current: GridSort, column: str) -> GridSort:
    """Flip direction on the active column, otherwise sort ascending by ``column``.

    Example:
        >>> toggle_sort(GridSort("name", "asc"), "name")
        GridSort(column='name', direction='desc')
        >>> toggle_sort(GridSort("name", "desc"), "uploaded")
        GridSort(column='uploaded', direction='asc')
    """
    if current.column == column:
        return GridSort(column, SORT_DESC if current.direction == SORT_ASC else SORT_ASC)
    return GridSort(column, SORT_ASC)


def collect_tags(summaries: Iterable[InstanceSummary]) -> list[str]:
    return sorted({tag for s in summaries for tag in s.tags})


def load_view_mode(storage: LocalStorage) -> str:
    mode = storage.get_item(VIEW_MODE_KEY)
    return mode if mode in VIEW_MODES else "standard"


def save_view_mode(storage: LocalStorage, mode: str) -> None:
    if mode not in VIEW_MODES:
        raise ValueError(f"Unknown view mode: {mode}")
    storage.set_item(VIEW_MODE_KEY, mode)


class GridStore(Observable):
    def __init__(self, backend: Backend) -> None:
        super().__init__()
        self.backend = backend
        self._summaries: list[InstanceSummary] = []
        self._selected: set[str] = set()
        self.filters = GridFilters()
        self.sort = GridSort()
        self._fetching = SingleFlight("summary fetch")

    @property
    def summaries(self) -> tuple[InstanceSummary, ...]:
        return tuple(self._summaries)

    @property
    def is_fetching(self) -> bool:
        return self._fetching.busy

    @property
    def filtered(self) -> list[InstanceSummary]:
        return filtered_view(self._summaries, self.filters, self.sort)

    @property
    def all_tags(self) -> list[str]:
        return collect_tags(self._summaries)

    def get(self, instance_id: str) -> InstanceSummary | None:
        return next((s for s in self._summaries if s.id == instance_id), None)

    def state_of(self, instance_id: str) -> str | None:
        summary = self.get(instance_id)
        return summary.state.lower() if summary else None

    # ------------------------------------------------------------------
    # Fetching
    # ------------------------------------------------------------------
    async def fetch_summaries(self) -> bool:
        """Refresh rows from the backend.

        Returns False when the call overlapped an in-flight fetch (and did
        nothing) or the fetch failed.
        """
        with self._fetching.try_acquire() as acquired:
            if not acquired:
                return False
            try:
                if not self.backend.has_scheduler:
                    await self._advance_running()
                summaries = await self.backend.list_summaries()
            except Exception:
                logger.exception("Failed to fetch summaries")
                return False
            self._summaries = list(summaries or [])
            self._notify()
            return True

    async def _advance_running(self) -> None:
        running = [s.id for s in self._summaries if s.state == STATE_RUNNING]
        if not running:
            return
        results = await asyncio.gather(
            *(self.backend.update_stats_only(instance_id) for instance_id in running),
            return_exceptions=True,
        )
        for instance_id, result in zip(running, results):
            if isinstance(result, BaseException):
                logger.debug("Stats update failed for %s: %s", instance_id, result)

    # ------------------------------------------------------------------
    # Local writes
    # ------------------------------------------------------------------
    def mark_transitional(self, ids: Iterable[str], state: str) -> None:
        targets = set(ids)
        if not targets:
            return
        self._summaries = [
            dataclasses.replace(s, state=state) if s.id in targets else s
            for s in self._summaries
        ]
        self._notify()

    def remove_ids(self, ids: Iterable[str]) -> None:
        targets = set(ids)
        self._summaries = [s for s in self._summaries if s.id not in targets]
        self._selected -= targets
        self._notify()

    def set_filters(self, **changes: Any) -> None:
        state = changes.get("state")
        if state is not None and state != "all" and state not in LIFECYCLE_STATES:
            raise ValueError(f"Unknown lifecycle state: {state}")
        self.filters = dataclasses.replace(self.filters, **changes)
        self._notify()

    def toggle_sort(self, column: str) -> GridSort:
        self.sort = toggle_sort(self.sort, column)
        self._notify()
        return self.sort

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------
    def _set_selection(self, ids: Iterable[str]) -> None:
        self._selected = set(ids)
        self._notify()

    def selected_ids(self) -> list[str]:
        """Selected ids that are visible in the filtered view, in view order."""
        return [s.id for s in self.filtered if s.id in self._selected]

    def is_selected(self, instance_id: str) -> bool:
        return instance_id in self._selected

    def toggle_select(self, instance_id: str) -> None:
        self._set_selection(self._selected ^ {instance_id})

    def select_all(self) -> None:
        self._set_selection(s.id for s in self.filtered)

    def deselect_all(self) -> None:
        self._set_selection(())

    def deselect(self, ids: Iterable[str]) -> None:
        self._set_selection(self._selected - set(ids))

    def invert_selection(self) -> None:
        self._set_selection(s.id for s in self.filtered if s.id not in self._selected)

    def select_range(self, from_idx: int, to_idx: int) -> None:
        """Add rows ``from_idx..to_idx`` (inclusive, either order) of the filtered view."""
        view = self.filtered
        start, end = sorted((from_idx, to_idx))
        start = max(start, 0)
        self._set_selection(self._selected | {s.id for s in view[start : end + 1]})

    def select_by_state(self, state: str) -> None:
        self._set_selection(s.id for s in self.filtered if s.state.lower() == state)

    def select_by_tag(self, tag: str) -> None:
        self._set_selection(s.id for s in self.filtered if tag in s.tags)

    def eligible(self, ids: Sequence[str], states: frozenset[str] | None) -> list[str]:
        """Subset of ``ids`` whose current state is in ``states`` (None allows any)."""
        if states is None:
            return list(ids)
        return [i for i in ids if self.state_of(i) in states]
