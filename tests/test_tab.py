"""Tests for herd.tabs.tab — tabs as a herd against in-process services."""

from __future__ import annotations

import asyncio

import pytest

from herd.tabs.bus import LocalBus
from herd.tabs.tab import Tab, new_tab_id
from tests.conftest import FAST, settle

MARGIN = 0.15


async def _open(make_tab, ids: list[str], **kwargs) -> list[Tab]:
    """Start tabs a few milliseconds apart, the way a user opens them."""
    tabs = [make_tab(tab_id, **kwargs) for tab_id in ids]
    for tab in tabs:
        await tab.start()
        await asyncio.sleep(0.005)
    await settle(FAST.convergence_bound + MARGIN)
    return tabs


async def _close_all(tabs: list[Tab]) -> None:
    for tab in tabs:
        await tab.close()


class TestTabIdentity:
    def test_new_tab_id(self) -> None:
        ids = {new_tab_id() for _ in range(50)}
        assert len(ids) == 50
        assert all(len(i) == 8 for i in ids)

    @pytest.mark.asyncio
    async def test_fixed_id(self, make_tab) -> None:
        assert make_tab("abc").tab_id == "abc"
        assert make_tab().tab_id

    @pytest.mark.asyncio
    async def test_idle_before_start(self, make_tab) -> None:
        tab = make_tab("a")
        assert tab.role == "idle"
        assert tab.upstream is None
        assert tab.todos == []


class TestHerd:
    @pytest.mark.asyncio
    async def test_only_the_leader_holds_the_upstream(self, make_tab, services) -> None:
        tabs = await _open(make_tab, ["a", "b", "c"])
        leader = next(t for t in tabs if t.is_leader)

        assert [t.tab_id for t in tabs if t.is_leader] == [leader.tab_id]
        assert leader.upstream is not None and leader.upstream.connected
        assert all(t.upstream is None for t in tabs if t is not leader)
        subs = services.broadcaster.get_subscribers(services.channel.topic)
        assert {s.client_id for s in subs} == {leader.tab_id}
        await _close_all(tabs)

    @pytest.mark.asyncio
    async def test_follower_edit_reaches_every_tab(self, make_tab, services) -> None:
        tabs = await _open(make_tab, ["a", "b", "c"])
        follower = next(t for t in tabs if not t.is_leader)

        task = follower.create("Buy milk")
        assert follower.todos[0]["title"] == "Buy milk"
        await task
        await services.dispatcher.drain()
        await settle(0.05)

        server = services.projection.get()
        assert [t["title"] for t in server] == ["Buy milk"]
        for tab in tabs:
            assert tab.todos == server
        await _close_all(tabs)

    @pytest.mark.asyncio
    async def test_counts(self, make_tab, services) -> None:
        tabs = await _open(make_tab, ["a", "b"])
        await tabs[1].create("one")
        await tabs[1].create("two", completed=True)
        await services.dispatcher.drain()
        await settle(0.05)
        for tab in tabs:
            assert (tab.todo_count, tab.completed_count) == (2, 1)
        await _close_all(tabs)

    @pytest.mark.asyncio
    async def test_rejected_edit_rolls_back_locally_only(self, make_tab, services) -> None:
        services.mutations.create("Walk the dog")
        tabs = await _open(make_tab, ["a", "b"])
        follower = next(t for t in tabs if not t.is_leader)
        before = follower.todos
        assert before == services.projection.get()

        item_id = before[0]["id"]
        task = follower.update(item_id, title="   ")
        assert follower.todos[0]["title"] == "   "
        await task
        assert follower.todos == before
        assert follower.reconciler.rollbacks == 1
        await _close_all(tabs)

    @pytest.mark.asyncio
    async def test_late_tab_is_hydrated_by_next_relay(self, make_tab, services) -> None:
        tabs = await _open(make_tab, ["a", "b"])
        await tabs[0].create("before the newcomer")
        await services.dispatcher.drain()
        await settle(0.05)

        late = make_tab("c")
        await late.start()
        await settle(FAST.discovery_timeout + MARGIN)
        assert late.role == "follower"
        assert late.todos == []

        await late.create("from the newcomer")
        await services.dispatcher.drain()
        await settle(0.05)
        server = services.projection.get()
        assert len(server) == 2
        for tab in [*tabs, late]:
            assert tab.todos == server
        await _close_all([*tabs, late])


class TestFailover:
    @pytest.mark.asyncio
    async def test_closing_the_leader_hands_over_upstream(self, make_tab, services) -> None:
        bus = LocalBus(latency=0.02)
        tabs = await _open(make_tab, ["a", "b", "c"], on_bus=bus)
        assert tabs[0].is_leader

        await tabs[0].close()
        assert tabs[0].upstream is None
        assert services.broadcaster.subscriber_count == 0

        await settle(FAST.failure_timeout + FAST.heartbeat_interval + MARGIN)
        survivors = tabs[1:]
        assert [t.tab_id for t in survivors if t.is_leader] == ["b"]
        subs = services.broadcaster.get_subscribers(services.channel.topic)
        assert {s.client_id for s in subs} == {"b"}

        await survivors[1].create("after failover")
        await services.dispatcher.drain()
        await settle(0.1)
        for tab in survivors:
            assert [t["title"] for t in tab.todos] == ["after failover"]
        await _close_all(survivors)

    @pytest.mark.asyncio
    async def test_teardown_leaves_nothing_running(self, make_tab, services, bus) -> None:
        tabs = await _open(make_tab, ["a", "b", "c"])
        await _close_all(tabs)
        await tabs[0].close()

        assert all(t.role == "idle" for t in tabs)
        assert all(t.election is not None and t.election.active_timers == 0 for t in tabs)
        assert services.broadcaster.subscriber_count == 0
        assert bus.handle_count("todos-sync") == 0
