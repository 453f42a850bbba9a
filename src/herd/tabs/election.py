"""Leader election — one upstream connection per herd of tabs.

Each tab runs a small state machine over the local bus.  There is no
arbiter: tabs exchange ``discover`` and ``ping`` messages and settle on a
single leader by timeouts plus an id tie-break.

Protocol:
    1. ``start()`` posts ``discover`` and waits ``discovery_timeout`` as a
       candidate.  Any ``ping`` in that window makes the tab a follower.
    2. A candidate that hears nothing becomes leader and pings at once.
    3. The leader pings every ``heartbeat_interval`` and answers each
       ``discover`` with an immediate ``ping``.
    4. A follower re-arms its failure timer on every ``ping`` (from any
       sender).  ``failure_timeout`` of silence promotes it to leader.
    5. A leader that hears a ``ping`` from a smaller id steps down.  A
       follower hearing a larger-id leader does nothing: the larger tab
       steps down on its own when it hears the smaller one.
    6. Messages carrying the tab's own id are ignored.

Convergence is bounded by one discovery window plus one heartbeat: any two
overlapping leaders exchange pings within a heartbeat and the larger id
yields.  Overlap during that window is accepted.

Timers are ``loop.call_later`` handles.  Handlers and timer callbacks run
to completion on the tab's loop, so the state machine needs no locks.
``close()`` cancels every handle and guards every callback, so nothing
fires after teardown.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import TYPE_CHECKING

from herd._errors import HerdError
from herd.config import ElectionTimings
from herd.tabs.bus import BusMessage

if TYPE_CHECKING:
    from collections.abc import Callable

    from herd._types import Item, MessageType, Role, TabID
    from herd.observability.collector import StackCollector
    from herd.tabs.bus import BusHandle


@dataclass(frozen=True, slots=True)
class HeartbeatRecord:
    """The most recent ``ping`` seen by a tab.

    Attributes:
        sender_id: Tab that sent the ping.
        timestamp: Loop time at receipt, in seconds.

    """

    sender_id: TabID
    timestamp: float


class LeaderElection:
    """Per-tab leader/follower state machine.

    Args:
        bus: This tab's bus handle.  The engine installs itself as the
            handle's ``on_message`` listener on ``start()``.
        tab_id: This tab's id.  Compared as a string for tie-breaks.
        timings: Discovery, heartbeat and failure timeouts.
        on_promote: Called after entering the leader role.
        on_demote: Called after leaving the leader role (step-down or close).
        on_data: Called with each relayed list received while not leader.
        collector: Optional collector for role changes and log lines.

    """

    def __init__(
        self,
        bus: BusHandle,
        tab_id: TabID,
        *,
        timings: ElectionTimings | None = None,
        on_promote: Callable[[], None] | None = None,
        on_demote: Callable[[], None] | None = None,
        on_data: Callable[[list[Item]], None] | None = None,
        collector: StackCollector | None = None,
    ) -> None:
        self._bus = bus
        self.tab_id = tab_id
        self.timings = timings or ElectionTimings()
        self.on_promote = on_promote
        self.on_demote = on_demote
        self.on_data = on_data
        self._collector = collector
        self._role: Role = "idle"
        self._closed = False
        self._loop: asyncio.AbstractEventLoop | None = None
        self._discovery: asyncio.TimerHandle | None = None
        self._heartbeat: asyncio.TimerHandle | None = None
        self._failure: asyncio.TimerHandle | None = None
        self.last_heartbeat: HeartbeatRecord | None = None

    @property
    def role(self) -> Role:
        return self._role

    @property
    def is_leader(self) -> bool:
        return self._role == "leader"

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def active_timers(self) -> int:
        """Number of armed timers (0 once closed)."""
        return sum(h is not None for h in (self._discovery, self._heartbeat, self._failure))

    # ----- Lifecycle -----

    def start(self) -> None:
        """Join the herd: post ``discover`` and open the discovery window.

        Must be called from a running event loop.

        Raises:
            HerdError: If the engine was already started or closed.

        """
        if self._closed or self._role != "idle":
            msg = f"Election for tab {self.tab_id} already started"
            raise HerdError(msg)
        self._loop = asyncio.get_running_loop()
        self._bus.on_message = self.handle
        self._set_role("candidate", "start")
        self._log("broadcast", f'Joining channel "{self._bus.name}"')
        self._send("discover")
        self._discovery = self._loop.call_later(
            self.timings.discovery_timeout, self._on_discovery_timeout
        )

    def close(self) -> None:
        """Leave the herd.  Cancels all timers; demotes if leader.  Idempotent."""
        if self._closed:
            return
        self._closed = True
        was_leader = self.is_leader
        self._cancel_timers()
        if self._bus.on_message == self.handle:
            self._bus.on_message = None
        self._set_role("idle", "close")
        if was_leader and self.on_demote is not None:
            self.on_demote()

    def relay(self, payload: list[Item]) -> bool:
        """Forward an authoritative list to followers.  Leader only.

        Returns:
            True if the list was posted.

        """
        if not self.is_leader or self._closed:
            return False
        self._send("data", payload)
        self._log("broadcast", "Relayed todos to followers")
        return True

    # ----- Message handling -----

    def handle(self, message: BusMessage) -> None:
        """Process one bus message (installed as the handle's listener)."""
        if self._closed or message.sender == self.tab_id:
            return
        match message.type:
            case "ping":
                self._on_ping(message)
            case "discover":
                if self.is_leader:
                    self._send("ping")
                    self._log("broadcast", f"Responded to discover from {message.sender}")
            case "data":
                if not self.is_leader and message.payload is not None:
                    self._log("broadcast", "Received data from leader")
                    if self.on_data is not None:
                        self.on_data(message.payload)

    def _on_ping(self, message: BusMessage) -> None:
        assert self._loop is not None
        self.last_heartbeat = HeartbeatRecord(message.sender, self._loop.time())
        if self._role == "candidate":
            self._become_follower("discovered")
        elif self._role == "leader":
            if message.sender < self.tab_id:
                self._become_follower("tie_break")
        elif self._role == "follower":
            self._arm_failure_timer()

    # ----- Transitions -----

    def _become_leader(self, reason: str) -> None:
        self._cancel(("_discovery", "_failure"))
        self._set_role("leader", reason)
        self._schedule_heartbeat()
        self._send("ping")
        self._log("leader", "Became leader")
        if self.on_promote is not None:
            self.on_promote()

    def _become_follower(self, reason: str) -> None:
        was_leader = self.is_leader
        self._cancel(("_discovery", "_heartbeat"))
        self._set_role("follower", reason)
        self._arm_failure_timer()
        if was_leader:
            self._log("follower", "Became follower (another tab has lower ID)")
            if self.on_demote is not None:
                self.on_demote()
        else:
            self._log("follower", "Became follower")

    # ----- Timers -----

    def _on_discovery_timeout(self) -> None:
        self._discovery = None
        if not self._closed and self._role == "candidate":
            self._become_leader("discovery_timeout")

    def _on_failure_timeout(self) -> None:
        self._failure = None
        if not self._closed and self._role == "follower":
            self._become_leader("failure_timeout")

    def _on_heartbeat(self) -> None:
        self._heartbeat = None
        if self._closed or not self.is_leader:
            return
        self._send("ping")
        self._schedule_heartbeat()

    def _schedule_heartbeat(self) -> None:
        assert self._loop is not None
        self._heartbeat = self._loop.call_later(self.timings.heartbeat_interval, self._on_heartbeat)

    def _arm_failure_timer(self) -> None:
        assert self._loop is not None
        self._cancel(("_failure",))
        self._failure = self._loop.call_later(self.timings.failure_timeout, self._on_failure_timeout)

    def _cancel(self, names: tuple[str, ...]) -> None:
        for name in names:
            handle: asyncio.TimerHandle | None = getattr(self, name)
            if handle is not None:
                handle.cancel()
                setattr(self, name, None)

    def _cancel_timers(self) -> None:
        self._cancel(("_discovery", "_heartbeat", "_failure"))

    # ----- Helpers -----

    def _send(self, type_: MessageType, payload: list[Item] | None = None) -> None:
        if self._bus.closed:
            return
        self._bus.post(BusMessage(type=type_, sender=self.tab_id, payload=payload))

    def _set_role(self, role: Role, reason: str) -> None:
        old, self._role = self._role, role
        if old != role and self._collector is not None:
            self._collector.record_role_change(self.tab_id, old, role, reason=reason)

    def _log(self, category: str, message: str) -> None:
        if self._collector is not None:
            self._collector.record_tab(self.tab_id, category, message)
