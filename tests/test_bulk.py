import asyncio

import pytest
import pytest_asyncio

from ratio_sync.background import GridSession
from ratio_sync.backends.browser import BrowserBackend
from ratio_sync.bulk import BulkActionCoordinator
from ratio_sync.grid_store import GridStore
from ratio_sync.instance_store import InstanceStore
from ratio_sync.models.grid import ImportedInstance, ImportResult
from ratio_sync.models.instance import create_default_instance
from ratio_sync.persistence import LocalStoragePersistence
from ratio_sync.reconcile import Reconciler

from conftest import DummyEngine, row


@pytest_asyncio.fixture
async def wired(backend, presets, fast_settings):
    store = InstanceStore(backend, presets, fast_settings)
    await store.initialize()
    for instance_id in ("A", "B", "C"):
        store.insert(create_default_instance(instance_id))
    backend.rows = {
        "A": row("A", state="stopped"),
        "B": row("B", state="running"),
        "C": row("C", state="stopped"),
    }
    grid = GridStore(backend)
    await grid.fetch_summaries()
    reconciler = Reconciler(store)
    return store, grid, BulkActionCoordinator(grid, reconciler)


@pytest.mark.asyncio
async def test_start_mixed_selection_only_touches_stopped(wired, backend):
    store, grid, bulk = wired
    placeholders = []
    grid.subscribe(lambda g: placeholders.append({s.id: s.state for s in g.summaries}))
    grid.toggle_select("A")
    grid.toggle_select("B")
    placeholders.clear()

    result = await bulk.start()

    assert backend.calls_to("grid_start") == [["A"]]
    assert placeholders[0]["A"] == "starting"
    assert placeholders[0]["B"] == "running"
    assert result.succeeded == ["A"]
    assert grid.state_of("A") == "running"
    assert store.get_instance("A").is_running is True
    assert store.get_instance("A").status_icon == "rocket"
    assert store.get_instance("B").is_running is False


@pytest.mark.asyncio
async def test_no_eligible_ids_skips_backend(wired, backend):
    _, grid, bulk = wired
    grid.toggle_select("A")
    assert await bulk.pause() is None
    assert await bulk.resume() is None
    assert backend.calls_to("grid_pause") == []
    assert backend.calls_to("grid_resume") == []


@pytest.mark.asyncio
async def test_pause_propagates_paused_flags(wired, backend):
    store, grid, bulk = wired
    grid.toggle_select("B")
    await bulk.pause()
    record = store.get_instance("B")
    assert record.is_running and record.is_paused
    assert record.status_message == "Paused"


@pytest.mark.asyncio
async def test_delete_purges_missing_ids(wired, backend):
    store, grid, bulk = wired
    del backend.rows["C"]
    grid.toggle_select("A")
    grid.toggle_select("C")

    result = await bulk.delete()

    assert result.succeeded == ["A"]
    assert [f.id for f in result.failed] == ["C"]
    assert grid.selected_ids() == []
    assert grid.get("A") is None and grid.get("C") is None
    assert "A" not in store and "C" not in store


@pytest.mark.asyncio
async def test_tag_refreshes_and_returns_count(wired, backend):
    _, grid, bulk = wired
    assert await bulk.tag(["x"]) is None
    grid.select_all()
    assert await bulk.tag(["x"], ["y"]) == 3
    assert backend.calls_to("grid_tag")[0][1:] == (["x"], ["y"])


@pytest.mark.asyncio
async def test_single_row_stop(wired, backend):
    store, grid, bulk = wired
    store.update_instance("B", is_running=True)
    await bulk.stop_instance("B")
    assert backend.calls_to("grid_stop") == [["B"]]
    assert store.get_instance("B").is_running is False
    assert store.get_instance("B").status_message == "Ready to start faking"


@pytest.mark.asyncio
async def test_import_user_errors_are_returned(wired, backend):
    _, _, bulk = wired
    assert (await bulk.import_files([])).errors == ["No files selected"]
    assert (await bulk.import_folder("  ")).errors == ["No folder selected"]
    result = await bulk.import_folder("/torrents")
    assert result.imported == []
    assert "not available" in result.errors[0]
    assert backend.calls_to("grid_import") == []


@pytest.mark.asyncio
async def test_import_files_merges_into_store(wired, backend):
    store, _, bulk = wired
    backend.import_result = ImportResult(imported=[ImportedInstance("N", "new.iso")])
    result = await bulk.import_files(["/tmp/new.torrent"])
    assert result.imported[0].id == "N"
    assert store.get_instance("N").torrent_path == "new.iso"


@pytest.mark.asyncio
async def test_single_row_start_pause_resume(wired, backend):
    store, grid, bulk = wired
    await bulk.start_instance("C")
    assert grid.state_of("C") == "running"
    await bulk.pause_instance("C")
    assert store.get_instance("C").is_paused is True
    await bulk.resume_instance("C")
    record = store.get_instance("C")
    assert record.is_running and not record.is_paused
    assert [name for name, _ in backend.calls if name.startswith("grid_")] == [
        "grid_start",
        "grid_pause",
        "grid_resume",
    ]


class YieldingEngine(DummyEngine):
    """Engine whose create and delete suspend, like a real async engine."""

    async def create_instance(self):
        await asyncio.sleep(0)
        return await super().create_instance()

    async def grid_delete(self, ids):
        await asyncio.sleep(0)
        return await super().grid_delete(ids)


@pytest.mark.asyncio
async def test_delete_everything_with_live_session(storage, presets, fast_settings):
    engine = YieldingEngine()
    backend = BrowserBackend(engine, LocalStoragePersistence(storage))
    store = InstanceStore(backend, presets, fast_settings)
    await store.initialize()
    await store.add_instance()
    await store.add_instance()
    grid = GridStore(backend)
    await grid.fetch_summaries()
    reconciler = Reconciler(store)
    session = GridSession(grid, reconciler, poll_interval_s=1.0, debounce_s=0.01)
    session.start()

    grid.select_all()
    result = await BulkActionCoordinator(grid, reconciler).delete()
    await asyncio.sleep(0.05)
    await session.teardown()

    assert sorted(result.succeeded) == ["1", "2", "3"]
    assert len(store) == 1
    # The only instance left on the engine is the one the store holds.
    assert list(engine.states) == store.ids()
