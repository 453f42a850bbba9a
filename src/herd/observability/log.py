"""Event log — the bounded, thread-safe store behind ``StackCollector``.

Keeps the most recent ``StackEvent`` objects (election, relay, pipeline,
cache and channel activity) for tests, the simulator and the
``/__herd/events`` endpoint.  A single ``threading.Lock`` guards the
buffer, so server threads and tab loops may record concurrently.
"""

import threading
from collections import Counter, deque
from typing import Any

from herd.observability.events import RoleChanged, StackEvent, TabEvent


def _owner(event: StackEvent) -> str | None:
    return getattr(event, "tab_id", None) or getattr(event, "client_id", None)


class EventLog:
    """Ring buffer of events; the oldest are dropped once ``max_events`` is reached."""

    __slots__ = ("_events", "_lock")

    def __init__(self, max_events: int = 10_000) -> None:
        self._events: deque[StackEvent] = deque(maxlen=max_events)
        self._lock = threading.Lock()

    def append(self, event: StackEvent) -> None:
        with self._lock:
            self._events.append(event)

    def query(
        self,
        *,
        event_type: type | None = None,
        tab_id: str | None = None,
        limit: int = 100,
    ) -> list[StackEvent]:
        """Return matching events, most recent first.

        Args:
            event_type: Only events of this type.
            tab_id: Only events owned by this tab (``tab_id``) or upstream
                subscriber (``client_id``).
            limit: Maximum number of events to return.

        """
        with self._lock:
            events = list(self._events)
        results: list[StackEvent] = []
        for event in reversed(events):
            if len(results) >= limit:
                break
            if event_type is not None and not isinstance(event, event_type):
                continue
            if tab_id is not None and _owner(event) != tab_id:
                continue
            results.append(event)
        return results

    def recent(self, n: int = 20) -> list[StackEvent]:
        """Return the ``n`` most recent events, oldest first."""
        with self._lock:
            items = list(self._events)
        return items[-n:]

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)

    def stats(self) -> dict[str, Any]:
        """Event counts, in total and per event type."""
        with self._lock:
            events = list(self._events)
        return {
            "total": len(events),
            "by_type": dict(Counter(type(event).__name__ for event in events)),
        }


def format_event(event: StackEvent, *, origin_ns: int = 0) -> str:
    """Render an event as a single log line.

    Tab events read like ``+0.512s [a1b2c3d4] leader  Became leader``;
    server events use ``server`` as the owner.  ``origin_ns`` is subtracted
    from the event timestamp so a session reads from zero.

    """
    elapsed = (getattr(event, "timestamp_ns", 0) - origin_ns) / 1e9 if origin_ns else 0.0
    owner = _owner(event) or "server"
    name = type(event).__name__
    match event:
        case TabEvent(category=category, message=message):
            detail = f"{category:<9} {message}"
        case RoleChanged(old=old, new=new, reason=reason):
            detail = f"{'role':<9} {old} -> {new} ({reason})"
        case _:
            body = {
                k: getattr(event, k)
                for k in getattr(event, "__slots__", ())
                if k not in ("timestamp_ns", "tab_id", "client_id")
            }
            detail = f"{name:<9} " + " ".join(f"{k}={v}" for k, v in body.items())
    return f"+{elapsed:7.3f}s [{owner}] {detail}"
