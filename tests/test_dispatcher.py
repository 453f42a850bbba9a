"""Tests for herd.server.dispatcher — background broadcast of the projection."""

from __future__ import annotations

import asyncio

import pytest

from herd.observability.collector import StackCollector
from herd.observability.events import BroadcastDiscarded, BroadcastEvent
from herd.server.broadcaster import Broadcaster
from herd.server.dispatcher import BroadcastDispatcher
from herd.server.projection import CachedProjection
from herd.server.store import MemoryStore


class ExplodingProjection(CachedProjection):
    def get(self):  # type: ignore[override]
        raise RuntimeError("cache backend down")


def _drain(sub) -> list[object]:
    messages = []
    while not sub.queue.empty():
        messages.append(sub.queue.get_nowait())
    return messages


class TestBroadcastFanOut:
    @pytest.mark.asyncio
    async def test_every_subscriber_gets_post_commit_list_once(self, services) -> None:
        subs = [services.channel.subscribe(f"tab-{i}") for i in range(3)]
        for sub in subs:
            assert _drain(sub) == [{"todos": []}]

        item = services.mutations.create("Buy milk")
        await services.dispatcher.drain()

        for sub in subs:
            assert _drain(sub) == [{"todos": [item]}]

    @pytest.mark.asyncio
    async def test_update_pushes_completed_item(self, services) -> None:
        milk = services.mutations.create("Buy milk")
        bread = services.mutations.create("Buy bread")
        await services.dispatcher.drain()
        subs = [services.channel.subscribe(f"tab-{i}") for i in range(2)]
        for sub in subs:
            _drain(sub)

        services.mutations.update(milk["id"], completed=True)
        await services.dispatcher.drain()

        for sub in subs:
            (message,) = _drain(sub)
            assert [item["id"] for item in message["todos"]] == [bread["id"], milk["id"]]
            assert message["todos"][1]["completed"] is True
            assert message["todos"][0]["completed"] is False

    @pytest.mark.asyncio
    async def test_broadcast_recorded(self, services, collector) -> None:
        services.channel.subscribe("tab-1")
        services.mutations.create("Buy milk")
        await services.dispatcher.drain()
        (event,) = collector.log.query(event_type=BroadcastEvent)
        assert event.todos == 1
        assert event.clients_notified == 1

    @pytest.mark.asyncio
    async def test_mutation_returns_before_broadcast(self, services) -> None:
        sub = services.channel.subscribe("tab-1")
        _drain(sub)
        services.mutations.create("Buy milk")
        assert sub.queue.empty()
        await services.dispatcher.drain()
        assert not sub.queue.empty()


class TestDispatcherFailures:
    @pytest.mark.asyncio
    async def test_failure_is_discarded(self, capsys: pytest.CaptureFixture[str]) -> None:
        collector = StackCollector()
        dispatcher = BroadcastDispatcher(
            ExplodingProjection(MemoryStore()), Broadcaster(), collector=collector
        )
        async with dispatcher:
            dispatcher.enqueue()
            await dispatcher.drain()
            assert dispatcher.running

        assert "Broadcast discarded: cache backend down" in capsys.readouterr().err
        (event,) = collector.log.query(event_type=BroadcastDiscarded)
        assert event.error == "cache backend down"

    @pytest.mark.asyncio
    async def test_worker_survives_failure(self) -> None:
        store = MemoryStore()
        projection = CachedProjection(store)
        broadcaster = Broadcaster()
        dispatcher = BroadcastDispatcher(projection, broadcaster)
        calls = 0
        real_dispatch = dispatcher.dispatch

        async def flaky() -> int:
            nonlocal calls
            calls += 1
            if calls == 1:
                raise RuntimeError("transient")
            return await real_dispatch()

        dispatcher.dispatch = flaky  # type: ignore[method-assign]
        async with dispatcher:
            dispatcher.enqueue()
            dispatcher.enqueue()
            await dispatcher.drain()
        assert calls == 2

    def test_full_queue_drops(self, capsys: pytest.CaptureFixture[str]) -> None:
        dispatcher = BroadcastDispatcher(CachedProjection(MemoryStore()), Broadcaster(), maxsize=1)
        assert dispatcher.enqueue() is True
        assert dispatcher.enqueue() is False
        assert dispatcher.pending == 1
        assert "broadcast queue full" in capsys.readouterr().err


class TestDispatcherLifecycle:
    @pytest.mark.asyncio
    async def test_start_is_idempotent_and_stop_cancels(self) -> None:
        dispatcher = BroadcastDispatcher(CachedProjection(MemoryStore()), Broadcaster())
        dispatcher.start()
        dispatcher.start()
        assert dispatcher.running
        await dispatcher.stop()
        assert not dispatcher.running
        await dispatcher.stop()

    @pytest.mark.asyncio
    async def test_dispatch_direct(self) -> None:
        broadcaster = Broadcaster()
        dispatcher = BroadcastDispatcher(CachedProjection(MemoryStore()), broadcaster)
        assert await dispatcher.dispatch() == 0
        await asyncio.sleep(0)
