"""Background jobs for the grid view: polling and push-event coalescing."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable

from . import config
from .grid_store import GridStore
from .models.events import EVENT_CREATED, EVENT_DELETED, EVENT_TYPES, InstanceEvent
from .reconcile import Reconciler

logger = logging.getLogger(__name__)

Refresh = Callable[[], Awaitable[object]]


class SummaryPoller:
    """Calls ``refresh`` immediately and then every ``interval_s`` seconds.

    Without an explicit interval the poller uses ``DEFAULT_POLL_INTERVAL_S``.
    """

    def __init__(self, refresh: Refresh, interval_s: float | None = None) -> None:
        self._refresh = refresh
        if interval_s is None:
            interval_s = config.settings.DEFAULT_POLL_INTERVAL_S
        self.interval_s = interval_s
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop())

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _loop(self) -> None:
        logger.info("Starting summary polling (interval=%ss)", self.interval_s)
        while True:
            try:
                start = time.monotonic()
                await self._refresh()
                elapsed = time.monotonic() - start
                await asyncio.sleep(max(0.0, self.interval_s - elapsed))
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Summary polling error")
                await asyncio.sleep(self.interval_s)


class EventCoalescer:
    """Trailing debounce: a burst of ``trigger`` calls yields one ``refresh``.

    Every call re-arms the timer; the refresh runs ``delay_s`` after the last
    call in the burst.
    """

    def __init__(self, refresh: Refresh, delay_s: float) -> None:
        self._refresh = refresh
        self.delay_s = delay_s
        self._handle: asyncio.TimerHandle | None = None
        self._pending: set[asyncio.Task] = set()
        self.fired = 0

    @property
    def armed(self) -> bool:
        return self._handle is not None

    def trigger(self, _event: InstanceEvent | None = None) -> None:
        if self._handle is not None:
            self._handle.cancel()
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self.delay_s, self._fire)

    def _fire(self) -> None:
        self._handle = None
        self.fired += 1
        task = asyncio.create_task(self._run())
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _run(self) -> None:
        try:
            await self._refresh()
        except Exception:
            logger.exception("Coalesced refresh failed")

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        for task in list(self._pending):
            task.cancel()


class GridSession:
    """Everything the grid view runs while it is open.

    ``start`` begins polling and subscribes to backend events; ``teardown``
    undoes all of it so nothing fires after the view is closed.
    """

    def __init__(
        self,
        grid: GridStore,
        reconciler: Reconciler,
        poll_interval_s: float,
        debounce_s: float,
    ) -> None:
        self.grid = grid
        self.reconciler = reconciler
        self.poller = SummaryPoller(grid.fetch_summaries, poll_interval_s)
        self.coalescer = EventCoalescer(grid.fetch_summaries, debounce_s)
        self._unsubscribe: Callable[[], None] | None = None
        self._reconcile_tasks: set[asyncio.Task] = set()

    def start(self) -> None:
        self.poller.start()
        if self._unsubscribe is None:
            self._unsubscribe = self.grid.backend.listen_to_instance_events(self.on_event)

    def on_event(self, event: InstanceEvent) -> None:
        if event.type not in EVENT_TYPES:
            logger.debug("Ignoring unknown instance event %r", event.type)
            return
        self.coalescer.trigger(event)
        if event.type in (EVENT_CREATED, EVENT_DELETED):
            task = asyncio.create_task(self._reconcile(event))
            self._reconcile_tasks.add(task)
            task.add_done_callback(self._reconcile_tasks.discard)

    async def _reconcile(self, event: InstanceEvent) -> None:
        try:
            await self.reconciler.apply_event(event)
        except Exception:
            logger.exception("Failed to apply %s event for %s", event.type, event.id)

    async def teardown(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self.coalescer.cancel()
        await self.poller.stop()
        for task in list(self._reconcile_tasks):
            task.cancel()
        if self._reconcile_tasks:
            await asyncio.gather(*self._reconcile_tasks, return_exceptions=True)
