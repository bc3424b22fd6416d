import asyncio

import pytest

from ratio_sync import config
from ratio_sync.background import EventCoalescer, GridSession, SummaryPoller
from ratio_sync.grid_store import GridStore
from ratio_sync.instance_store import InstanceStore
from ratio_sync.models.events import InstanceEvent
from ratio_sync.reconcile import Reconciler

from conftest import row


class CountingRefresh:
    def __init__(self, fail: bool = False) -> None:
        self.calls = 0
        self.fail = fail

    async def __call__(self):
        self.calls += 1
        if self.fail:
            raise RuntimeError("backend down")


@pytest.mark.asyncio
async def test_burst_of_events_yields_one_refresh():
    refresh = CountingRefresh()
    coalescer = EventCoalescer(refresh, delay_s=0.2)
    for i in range(5):
        coalescer.trigger(InstanceEvent("state_changed", str(i)))
        await asyncio.sleep(0.01)
    assert coalescer.armed
    assert refresh.calls == 0

    await asyncio.sleep(0.35)
    assert refresh.calls == 1
    assert coalescer.fired == 1
    assert not coalescer.armed


@pytest.mark.asyncio
async def test_coalescer_cancel_prevents_refresh():
    refresh = CountingRefresh()
    coalescer = EventCoalescer(refresh, delay_s=0.05)
    coalescer.trigger()
    coalescer.cancel()
    await asyncio.sleep(0.1)
    assert refresh.calls == 0


@pytest.mark.asyncio
async def test_coalesced_refresh_failure_is_logged(caplog):
    coalescer = EventCoalescer(CountingRefresh(fail=True), delay_s=0.01)
    coalescer.trigger()
    await asyncio.sleep(0.05)
    assert "Coalesced refresh failed" in caplog.text


@pytest.mark.asyncio
async def test_poller_refreshes_until_stopped():
    refresh = CountingRefresh()
    poller = SummaryPoller(refresh, interval_s=0.01)
    poller.start()
    await asyncio.sleep(0.05)
    assert poller.running
    await poller.stop()
    assert not poller.running
    seen = refresh.calls
    assert seen >= 2
    await asyncio.sleep(0.03)
    assert refresh.calls == seen


@pytest.mark.asyncio
async def test_poller_survives_refresh_errors(caplog):
    refresh = CountingRefresh(fail=True)
    poller = SummaryPoller(refresh, interval_s=0.01)
    poller.start()
    await asyncio.sleep(0.05)
    await poller.stop()
    assert refresh.calls >= 2
    assert "Summary polling error" in caplog.text


@pytest.mark.asyncio
async def test_grid_session_lifecycle(backend, presets, fast_settings):
    store = InstanceStore(backend, presets, fast_settings)
    await store.initialize()
    backend.rows = {"1": row("1", state="running")}
    grid = GridStore(backend)
    session = GridSession(grid, Reconciler(store), poll_interval_s=0.01, debounce_s=0.02)

    session.start()
    session.start()
    assert len(backend.listeners) == 1
    await asyncio.sleep(0.03)
    assert grid.get("1") is not None

    active = store.active_id
    backend.emit(InstanceEvent("deleted", active))
    assert session.coalescer.armed
    await asyncio.sleep(0.05)
    assert active not in store
    assert len(store) == 1

    await session.teardown()
    assert backend.listeners == []
    assert not session.poller.running
    assert not session.coalescer.armed

    fetches = len(backend.calls_to("list_summaries"))
    await asyncio.sleep(0.05)
    assert len(backend.calls_to("list_summaries")) == fetches


@pytest.mark.asyncio
async def test_unknown_events_are_ignored(backend):
    session = GridSession(GridStore(backend), None, poll_interval_s=1.0, debounce_s=0.01)
    session.on_event(InstanceEvent("renamed", "1"))
    assert not session.coalescer.armed


def test_poller_defaults_to_configured_interval(monkeypatch):
    monkeypatch.setattr(config.settings, "DEFAULT_POLL_INTERVAL_S", 0.5)
    assert SummaryPoller(CountingRefresh()).interval_s == 0.5
    assert SummaryPoller(CountingRefresh(), interval_s=3.0).interval_s == 3.0
