"""Stack collector — one recording entry point for server and tab events.

Server components (projection, mutation pipeline, dispatcher) and tab
components (election, reconciler, upstream client) receive an optional
collector and call its ``record_*`` methods.  Also implements Pounce's
``LifecycleCollector`` protocol (duck-typed) so connection events from
``herd serve`` land in the same log.

Thread Safety:
    The collector delegates to ``EventLog`` which is internally locked.
    Safe for concurrent use from multiple Pounce worker threads.

"""

from __future__ import annotations

from typing import Any

from herd.observability.events import (
    BroadcastDiscarded,
    BroadcastEvent,
    CacheEvent,
    ChannelEvent,
    MutationCommitted,
    MutationRejected,
    OptimisticRollback,
    RoleChanged,
    TabEvent,
    now_ns,
)
from herd.observability.log import EventLog


class StackCollector:
    """Unified event collector for server and tabs.

    Args:
        log: The EventLog to store events in.

    """

    __slots__ = ("_log",)

    def __init__(self, log: EventLog | None = None) -> None:
        self._log = log if log is not None else EventLog()

    @property
    def log(self) -> EventLog:
        """The underlying event log."""
        return self._log

    # ----- Pounce LifecycleCollector protocol -----

    def record(self, event: Any) -> None:
        """Record a Pounce lifecycle event as-is (they are frozen dataclasses)."""
        self._log.append(event)

    # ----- Tab events -----

    def record_role_change(self, tab_id: str, old: str, new: str, *, reason: str) -> None:
        self._log.append(
            RoleChanged(
                tab_id=tab_id,
                old=old,
                new=new,
                reason=reason,  # type: ignore[arg-type]
                timestamp_ns=now_ns(),
            )
        )

    def record_tab(self, tab_id: str, category: str, message: str) -> None:
        """Record a tab log line (``cable``, ``broadcast``, ``leader``, ``follower``)."""
        self._log.append(
            TabEvent(
                tab_id=tab_id,
                category=category,  # type: ignore[arg-type]
                message=message,
                timestamp_ns=now_ns(),
            )
        )

    def record_rollback(self, tab_id: str, kind: str, item_id: int, *, error: str) -> None:
        self._log.append(
            OptimisticRollback(
                tab_id=tab_id,
                kind=kind,
                item_id=item_id,
                error=error,
                timestamp_ns=now_ns(),
            )
        )

    def record_channel(self, client_id: str, action: str, *, topic: str = "todos") -> None:
        self._log.append(
            ChannelEvent(
                client_id=client_id,
                action=action,  # type: ignore[arg-type]
                topic=topic,
                timestamp_ns=now_ns(),
            )
        )

    # ----- Server events -----

    def record_commit(self, kind: str, item_id: int) -> None:
        self._log.append(MutationCommitted(kind=kind, item_id=item_id, timestamp_ns=now_ns()))

    def record_reject(self, kind: str, item_id: int | None, *, error: str) -> None:
        self._log.append(
            MutationRejected(kind=kind, item_id=item_id, error=error, timestamp_ns=now_ns())
        )

    def record_cache(self, key: str, action: str) -> None:
        self._log.append(
            CacheEvent(key=key, action=action, timestamp_ns=now_ns())  # type: ignore[arg-type]
        )

    def record_broadcast(
        self,
        topic: str,
        *,
        todos: int = 0,
        clients_notified: int = 0,
        duration_ms: float = 0.0,
    ) -> None:
        """Record a completed fan-out of the projection."""
        self._log.append(
            BroadcastEvent(
                topic=topic,
                todos=todos,
                clients_notified=clients_notified,
                duration_ms=duration_ms,
                timestamp_ns=now_ns(),
            )
        )

    def record_broadcast_discarded(self, topic: str, *, error: str) -> None:
        self._log.append(BroadcastDiscarded(topic=topic, error=error, timestamp_ns=now_ns()))
