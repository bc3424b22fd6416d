"""Entrypoint: pick the backend for the run mode and wire the stores together.

The desktop and browser runtimes need a host or engine object supplied by the
embedding application; from the command line only the server runtime can be
started.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any

from . import config
from .background import GridSession
from .backends.base import Backend, RunMode
from .backends.browser import BrowserBackend
from .backends.desktop import DesktopBackend
from .backends.server import ServerBackend
from .bulk import BulkActionCoordinator
from .config import Settings, validate_settings
from .grid_store import GridStore
from .instance_store import InstanceStore
from .logger import setup_logging
from .persistence import LocalStoragePersistence
from .presets import PresetStore
from .reconcile import Reconciler
from .storage import LocalStorage

logger = logging.getLogger(__name__)

STORAGE_FILE = "local-storage.json"


def build_backend(
    s: Settings,
    storage: LocalStorage,
    host: Any = None,
    engine: Any = None,
    transport: Any = None,
) -> Backend:
    mode = RunMode(s.RUN_MODE)
    if mode is RunMode.SERVER:
        return ServerBackend(
            s.SERVER_URL,
            LocalStoragePersistence(storage),
            token=s.SERVER_TOKEN,
            timeout=s.HTTP_TIMEOUT_S,
            transport=transport,
        )
    if mode is RunMode.DESKTOP:
        if host is None:
            raise RuntimeError("RUN_MODE=desktop requires a desktop host")
        return DesktopBackend(host)
    if engine is None:
        raise RuntimeError("RUN_MODE=browser requires a simulation engine")
    return BrowserBackend(engine, LocalStoragePersistence(storage))


@dataclass
class App:
    settings: Settings
    storage: LocalStorage
    backend: Backend
    presets: PresetStore
    instances: InstanceStore
    reconciler: Reconciler
    grid: GridStore
    bulk: BulkActionCoordinator
    tasks: set = field(default_factory=set)

    def schedule_save(self, _store: object = None) -> None:
        task = asyncio.create_task(self.instances.save_session())
        self.tasks.add(task)
        task.add_done_callback(self.tasks.discard)

    def grid_session(self) -> GridSession:
        return GridSession(
            self.grid,
            self.reconciler,
            poll_interval_s=self.settings.GRID_POLL_INTERVAL_S,
            debounce_s=self.settings.EVENT_DEBOUNCE_S,
        )

    async def aclose(self) -> None:
        if self.tasks:
            await asyncio.gather(*self.tasks, return_exceptions=True)
        await self.backend.aclose()


def build_app(
    s: Settings | None = None, host: Any = None, engine: Any = None, transport: Any = None
) -> App:
    s = s or config.settings
    storage = LocalStorage(s.DATA_DIR / STORAGE_FILE)
    backend = build_backend(s, storage, host=host, engine=engine, transport=transport)
    presets = PresetStore(storage)
    instances = InstanceStore(backend, presets, s)
    reconciler = Reconciler(instances, backend)
    grid = GridStore(backend)
    return App(
        settings=s,
        storage=storage,
        backend=backend,
        presets=presets,
        instances=instances,
        reconciler=reconciler,
        grid=grid,
        bulk=BulkActionCoordinator(grid, reconciler, backend),
    )


async def run(
    s: Settings | None = None,
    host: Any = None,
    engine: Any = None,
    stop: asyncio.Event | None = None,
) -> None:
    app = build_app(s, host=host, engine=engine)
    logger.info("Starting ratio_sync in %s mode", app.backend.mode.value)
    active_id = await app.instances.initialize()
    logger.info("Active instance: %s (%d total)", active_id, len(app.instances))
    # Subscribe after initialize so the restored state is not written straight back.
    unsubscribe = app.instances.subscribe(app.schedule_save)

    session = app.grid_session()
    session.start()
    try:
        await (stop or asyncio.Event()).wait()
    finally:
        unsubscribe()
        await session.teardown()
        await app.instances.save_session()
        await app.aclose()


def main() -> None:
    setup_logging()
    validate_settings()
    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        logger.info("Interrupted; shutting down")


if __name__ == "__main__":
    main()
