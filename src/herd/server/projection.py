"""Cached projection — the single serialized todo list served to tabs.

The projection is a pure function of the store: all todos, newest first,
in the ``Item`` shape.  It is cached under one key with a TTL and dropped
on every committed mutation.

Freshness:
    ``invalidate()`` bumps a generation counter.  A recompute that started
    before an invalidation still answers its own caller but is not stored,
    so no read after the invalidation can be served data older than it.
    Concurrent misses may recompute redundantly; the recompute is
    deterministic, so whichever result lands is equal.

Thread Safety:
    The entry and generation are protected by a ``threading.Lock``.  The
    recompute itself runs outside the lock.

"""

from __future__ import annotations

import json
import threading
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Callable

    from herd._types import Item
    from herd.observability.collector import StackCollector
    from herd.server.store import TodoStore

CACHE_KEY = "todos:broadcast_list"
DEFAULT_TTL = 3600.0


@dataclass(frozen=True, slots=True)
class CacheEntry:
    """A stored projection.

    Attributes:
        key: Cache key (always ``CACHE_KEY``).
        value: The list serialized as JSON.
        expires_at: Clock value after which the entry is ignored.

    """

    key: str
    value: str
    expires_at: float

    def expired(self, now: float) -> bool:
        return now >= self.expires_at


class CachedProjection:
    """Builds and caches the serialized todo list.

    Args:
        store: Persisted todos.
        ttl: Entry lifetime in seconds.
        clock: Monotonic clock in seconds (injectable for tests).
        collector: Optional collector for cache hit/miss events.

    """

    def __init__(
        self,
        store: TodoStore,
        *,
        ttl: float = DEFAULT_TTL,
        clock: Callable[[], float] = time.monotonic,
        collector: StackCollector | None = None,
    ) -> None:
        self._store = store
        self._ttl = ttl
        self._clock = clock
        self._collector = collector
        self._entry: CacheEntry | None = None
        self._generation = 0
        self._lock = threading.Lock()

    @property
    def entry(self) -> CacheEntry | None:
        """The current entry, if any (expired entries included)."""
        with self._lock:
            return self._entry

    def get(self) -> list[Item]:
        """Return the cached list, recomputing it on a miss or expiry.

        Each call returns a fresh list; callers may mutate it freely.

        """
        with self._lock:
            entry = self._entry
            generation = self._generation
        if entry is not None and not entry.expired(self._clock()):
            self._record("hit")
            return json.loads(entry.value)

        value = self.recompute()
        stored = False
        with self._lock:
            if self._generation == generation:
                self._entry = CacheEntry(
                    key=CACHE_KEY, value=value, expires_at=self._clock() + self._ttl
                )
                stored = True
        self._record("miss" if stored else "stale")
        return json.loads(value)

    def recompute(self) -> str:
        """Serialize the store, newest first, bypassing the cache."""
        items = [record.to_item() for record in self._store.newest_first()]
        return json.dumps(items, separators=(",", ":"))

    def invalidate(self) -> None:
        """Drop the cached entry.  Idempotent; an absent entry is not an error."""
        with self._lock:
            self._entry = None
            self._generation += 1
        self._record("invalidate")

    def _record(self, action: str) -> None:
        if self._collector is not None:
            self._collector.record_cache(CACHE_KEY, action)
