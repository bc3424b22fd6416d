import dataclasses

import pytest

from ratio_sync import main
from ratio_sync.backends.base import BackendError, RunMode, UnsupportedOperation
from ratio_sync.backends.browser import BrowserBackend
from ratio_sync.backends.desktop import DesktopBackend
from ratio_sync.backends.server import ServerBackend
from ratio_sync.models.grid import ImportConfig
from ratio_sync.models.session import SavedInstance
from ratio_sync.persistence import DesktopConfigPersistence, LocalStoragePersistence

from conftest import DummyEngine, DummyHost


@pytest.mark.asyncio
async def test_desktop_restoration_complete():
    assert await DesktopBackend(DummyHost()).restoration_complete() is True
    host = DummyHost({"is_restore_complete": lambda: False})
    assert await DesktopBackend(host).restoration_complete() is False


@pytest.mark.asyncio
async def test_desktop_wraps_host_errors():
    backend = DesktopBackend(DummyHost())
    with pytest.raises(BackendError, match="create_instance failed"):
        await backend.create_instance()
    with pytest.raises(UnsupportedOperation):
        await backend.list_instances()


@pytest.mark.asyncio
async def test_desktop_commands_and_arguments():
    host = DummyHost(
        {
            "create_instance": lambda: 12,
            "list_summaries": lambda: [{"id": 12, "name": "a", "state": "Idle"}],
            "grid_tag": lambda ids, add_tags, remove_tags: {"updated": len(ids)},
            "grid_import_folder": lambda path, config: {"imported": [{"id": 13, "name": "b"}]},
        }
    )
    backend = DesktopBackend(host)
    assert isinstance(backend.persistence, DesktopConfigPersistence)
    assert await backend.create_instance() == "12"
    assert (await backend.list_summaries())[0].state == "idle"
    assert await backend.grid_tag(["12"], ["x"], []) == 1
    result = await backend.grid_import_folder("/watch", ImportConfig(auto_start=True))
    assert result.imported[0].id == "13"
    command, args = host.invoked[-1]
    assert command == "grid_import_folder"
    assert args["config"]["autoStart"] is True


@pytest.mark.asyncio
async def test_desktop_reattach_loads_from_saved_path():
    host = DummyHost({"load_instance_torrent": lambda instance_id, path: {"name": path}})
    backend = DesktopBackend(host)
    saved = SavedInstance(torrent_path="/t/a.torrent")
    assert await backend.reattach_torrent("1", saved) == {"name": "/t/a.torrent"}
    with pytest.raises(BackendError):
        await backend.reattach_torrent("1", SavedInstance())


def test_desktop_events_are_mapped():
    host = DummyHost()
    backend = DesktopBackend(host)
    received = []
    unsubscribe = backend.listen_to_instance_events(received.append)

    host.fire("instance-deleted", "7")
    host.fire("instance-created", {"id": 3, "name": "x"})
    host.fire("instance-state-changed", {"id": 3, "state": "running"})
    assert [(e.type, e.id) for e in received] == [
        ("deleted", "7"),
        ("created", "3"),
        ("state_changed", "3"),
    ]
    assert received[1].payload == {"name": "x"}

    unsubscribe()
    host.fire("instance-deleted", "8")
    assert len(received) == 3
    assert all(not handlers for handlers in host.listeners.values())


@pytest.fixture
def browser(storage):
    return BrowserBackend(DummyEngine(), LocalStoragePersistence(storage))


@pytest.mark.asyncio
async def test_browser_emits_lifecycle_events(browser):
    received = []
    unsubscribe = browser.listen_to_instance_events(received.append)

    first = await browser.create_instance()
    second = await browser.create_instance()
    result = await browser.grid_start([first, "missing"])
    assert result.succeeded == [first]
    assert result.failed[0].id == "missing"
    await browser.delete_instance(second)

    assert [(e.type, e.id) for e in received] == [
        ("created", first),
        ("created", second),
        ("state_changed", first),
        ("deleted", second),
    ]
    summaries = await browser.list_summaries()
    assert [(s.id, s.state) for s in summaries] == [(first, "running")]

    unsubscribe()
    await browser.grid_delete([first])
    assert len(received) == 4


@pytest.mark.asyncio
async def test_browser_wraps_engine_errors(browser):
    received = []
    browser.listen_to_instance_events(received.append)
    with pytest.raises(BackendError, match="delete_instance"):
        await browser.delete_instance("nope")
    assert received == []


@pytest.mark.asyncio
async def test_browser_reattach_uses_embedded_torrent(browser):
    saved = SavedInstance(torrent={"name": "a"})
    assert await browser.reattach_torrent("1", saved) == {"name": "a"}
    with pytest.raises(BackendError):
        await browser.reattach_torrent("1", SavedInstance(torrent_path="/t/a.torrent"))


def test_build_backend_per_mode(fast_settings, storage):
    server = main.build_backend(dataclasses.replace(fast_settings, RUN_MODE="server"), storage)
    assert isinstance(server, ServerBackend)
    assert server.mode is RunMode.SERVER

    desktop = main.build_backend(
        dataclasses.replace(fast_settings, RUN_MODE="desktop"), storage, host=DummyHost()
    )
    assert isinstance(desktop, DesktopBackend)

    browser = main.build_backend(fast_settings, storage, engine=DummyEngine())
    assert isinstance(browser, BrowserBackend)


def test_build_backend_requires_host_or_engine(fast_settings, storage):
    with pytest.raises(RuntimeError, match="desktop host"):
        main.build_backend(dataclasses.replace(fast_settings, RUN_MODE="desktop"), storage)
    with pytest.raises(RuntimeError, match="simulation engine"):
        main.build_backend(fast_settings, storage)


@pytest.mark.asyncio
async def test_build_app_wires_stores(fast_settings):
    app = main.build_app(fast_settings, engine=DummyEngine())
    assert app.instances.backend is app.backend
    assert app.grid.backend is app.backend
    assert app.bulk.reconciler is app.reconciler
    active = await app.instances.initialize()
    assert app.instances.active_id == active
    await app.aclose()
