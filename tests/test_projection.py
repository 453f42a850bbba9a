"""Tests for herd.server.projection — the cached todo list."""

import json

from herd.observability.collector import StackCollector
from herd.observability.events import CacheEvent
from herd.server.projection import CACHE_KEY, CachedProjection
from herd.server.store import MemoryStore


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def _actions(collector: StackCollector) -> list[str]:
    return [e.action for e in collector.log.recent(100) if isinstance(e, CacheEvent)]


class TestCachedProjection:
    def test_empty_store(self) -> None:
        assert CachedProjection(MemoryStore()).get() == []

    def test_miss_then_hit(self) -> None:
        collector = StackCollector()
        projection = CachedProjection(MemoryStore(), collector=collector)
        projection.get()
        projection.get()
        assert _actions(collector) == ["miss", "hit"]
        assert projection.entry is not None
        assert projection.entry.key == CACHE_KEY

    def test_cached_value_equals_recompute(self) -> None:
        store = MemoryStore()
        store.create("a")
        store.create("b", completed=True)
        projection = CachedProjection(store)
        projection.get()
        assert projection.get() == json.loads(projection.recompute())

    def test_newest_first(self) -> None:
        store = MemoryStore(clock=iter(["t1", "t1", "t2", "t2"]).__next__)
        store.create("old")
        store.create("new")
        assert [t["title"] for t in CachedProjection(store).get()] == ["new", "old"]

    def test_returns_fresh_list_each_call(self) -> None:
        store = MemoryStore()
        store.create("a")
        projection = CachedProjection(store)
        first = projection.get()
        first[0]["title"] = "mutated by caller"
        assert projection.get()[0]["title"] == "a"

    def test_stale_until_invalidated(self) -> None:
        store = MemoryStore()
        projection = CachedProjection(store)
        assert projection.get() == []
        store.create("a")
        assert projection.get() == []
        projection.invalidate()
        assert [t["title"] for t in projection.get()] == ["a"]

    def test_invalidate_is_idempotent(self) -> None:
        projection = CachedProjection(MemoryStore())
        projection.invalidate()
        projection.invalidate()
        assert projection.entry is None
        projection.get()
        projection.invalidate()
        projection.invalidate()
        assert projection.entry is None

    def test_ttl_expiry(self) -> None:
        clock = FakeClock()
        store = MemoryStore()
        projection = CachedProjection(store, ttl=10.0, clock=clock)
        projection.get()
        store.create("a")
        clock.now = 9.9
        assert projection.get() == []
        clock.now = 10.0
        assert len(projection.get()) == 1

    def test_recompute_racing_invalidate_is_not_stored(self) -> None:
        collector = StackCollector()
        store = MemoryStore()
        projection = CachedProjection(store, collector=collector)
        original = projection.recompute

        def racing_recompute() -> str:
            value = original()
            store.create("late")
            projection.invalidate()
            return value

        projection.recompute = racing_recompute  # type: ignore[method-assign]
        assert projection.get() == []
        assert projection.entry is None
        assert "stale" in _actions(collector)

        projection.recompute = original  # type: ignore[method-assign]
        assert [t["title"] for t in projection.get()] == ["late"]
