"""Unified event model for herd observability.

Defines event types for the server pipeline (mutations, cache, broadcast)
and for the tab side (election, relay, upstream channel, rollback).

All events are frozen dataclasses with:
- ``timestamp_ns``: Monotonic nanosecond timestamp
- Descriptive fields for the specific event type

Thread Safety:
    All events are frozen (immutable) and safe to share across threads.

"""

import time
from dataclasses import dataclass
from typing import Literal


# ---------------------------------------------------------------------------
# Tab events
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class RoleChanged:
    """A tab's election role changed.

    Attributes:
        tab_id: The tab whose role changed.
        old: Previous role.
        new: New role.
        reason: Protocol event that caused the transition.
        timestamp_ns: Monotonic nanosecond timestamp.

    """

    tab_id: str
    old: str
    new: str
    reason: Literal[
        "start", "discovered", "discovery_timeout", "failure_timeout", "tie_break", "close"
    ]
    timestamp_ns: int


@dataclass(frozen=True, slots=True)
class TabEvent:
    """A free-form tab log line, grouped by category.

    Attributes:
        tab_id: The tab that produced the line.
        category: ``cable`` for upstream traffic, ``broadcast`` for bus
            traffic, ``leader``/``follower`` for role announcements.
        message: Human-readable description.
        timestamp_ns: Monotonic nanosecond timestamp.

    """

    tab_id: str
    category: Literal["cable", "broadcast", "leader", "follower"]
    message: str
    timestamp_ns: int


@dataclass(frozen=True, slots=True)
class OptimisticRollback:
    """An optimistic change was rejected and reverted locally."""

    tab_id: str
    kind: str
    item_id: int
    error: str
    timestamp_ns: int


@dataclass(frozen=True, slots=True)
class ChannelEvent:
    """Upstream channel lifecycle: subscribe, disconnect, reconnect.

    Attributes:
        client_id: Subscriber identifier (the tab id on the client side).
        action: What happened to the channel.
        topic: Subscription topic.
        timestamp_ns: Monotonic nanosecond timestamp.

    """

    client_id: str
    action: Literal["connected", "disconnected", "reconnecting", "closed"]
    topic: str
    timestamp_ns: int


# ---------------------------------------------------------------------------
# Server events
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class MutationCommitted:
    """A create/update/delete was persisted."""

    kind: str
    item_id: int
    timestamp_ns: int


@dataclass(frozen=True, slots=True)
class MutationRejected:
    """A mutation failed validation or targeted a missing item."""

    kind: str
    item_id: int | None
    error: str
    timestamp_ns: int


@dataclass(frozen=True, slots=True)
class CacheEvent:
    """A projection cache access.

    Attributes:
        key: Cache key.
        action: ``hit`` (served from cache), ``miss`` (recomputed and
            stored), ``stale`` (recomputed but not stored because an
            invalidation raced it), ``invalidate``.
        timestamp_ns: Monotonic nanosecond timestamp.

    """

    key: str
    action: Literal["hit", "miss", "stale", "invalidate"]
    timestamp_ns: int


@dataclass(frozen=True, slots=True)
class BroadcastEvent:
    """A projection was pushed to upstream subscribers.

    Attributes:
        topic: Subscription topic.
        todos: Number of items in the pushed list.
        clients_notified: Number of subscribers that received the push.
        duration_ms: Time from dequeue to fan-out completion.
        timestamp_ns: Monotonic nanosecond timestamp.

    """

    topic: str
    todos: int
    clients_notified: int
    duration_ms: float
    timestamp_ns: int


@dataclass(frozen=True, slots=True)
class BroadcastDiscarded:
    """A broadcast task failed or was dropped and will not be retried."""

    topic: str
    error: str
    timestamp_ns: int


# ---------------------------------------------------------------------------
# Union type
# ---------------------------------------------------------------------------

type StackEvent = (
    RoleChanged
    | TabEvent
    | OptimisticRollback
    | ChannelEvent
    | MutationCommitted
    | MutationRejected
    | CacheEvent
    | BroadcastEvent
    | BroadcastDiscarded
)


def now_ns() -> int:
    """Return the current monotonic clock value in nanoseconds."""
    return time.monotonic_ns()
