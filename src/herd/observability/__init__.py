"""Observability — one event model for the server pipeline and the tabs.

Aggregates events from:
- **Tabs**: Election role changes, bus relay, upstream channel, rollbacks
- **Server**: Mutations, projection cache, broadcast fan-out
- **Pounce**: Connection lifecycle when running under ``herd serve``

All events are frozen dataclasses with nanosecond timestamps, safe for
concurrent production from multiple worker threads.

Quick Start:
    >>> from herd.observability import StackCollector, EventLog
    >>> log = EventLog()
    >>> collector = StackCollector(log)
    >>> # Pass collector to server services and tabs
    >>> # Components record via collector.record_*(...)

"""

from herd.observability.collector import StackCollector
from herd.observability.events import (
    BroadcastDiscarded,
    BroadcastEvent,
    CacheEvent,
    ChannelEvent,
    MutationCommitted,
    MutationRejected,
    OptimisticRollback,
    RoleChanged,
    StackEvent,
    TabEvent,
    now_ns,
)
from herd.observability.log import EventLog, format_event

__all__ = [
    "BroadcastDiscarded",
    "BroadcastEvent",
    "CacheEvent",
    "ChannelEvent",
    "EventLog",
    "MutationCommitted",
    "MutationRejected",
    "OptimisticRollback",
    "RoleChanged",
    "StackCollector",
    "StackEvent",
    "TabEvent",
    "format_event",
    "now_ns",
]
