"""Local broadcast bus — the same-origin channel tabs talk over.

Mirrors the browser ``BroadcastChannel`` contract: a message posted on a
named channel is delivered asynchronously to every *other* open handle on
that channel.  Delivery is at-most-once with no ordering guarantee across
senders.  ``latency``, ``jitter`` and ``loss`` make those weak guarantees
observable in tests and simulations.
"""

from __future__ import annotations

import asyncio
import random
import threading
from collections import defaultdict
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from herd._errors import HerdError

if TYPE_CHECKING:
    from collections.abc import Callable

    from herd._types import Item, MessageType, TabID


@dataclass(frozen=True, slots=True)
class BusMessage:
    """A cross-tab message.

    Attributes:
        type: ``discover``, ``ping`` (heartbeat) or ``data`` (relayed list).
        sender: Id of the posting tab (``from`` on the wire).
        payload: The todo list for ``data``, else None.

    """

    type: MessageType
    sender: TabID
    payload: list[Item] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "from": self.sender, "payload": self.payload}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BusMessage:
        return cls(type=data["type"], sender=data["from"], payload=data.get("payload"))


class BusHandle:
    """One tab's open end of a bus channel.

    Set ``on_message`` to receive messages.  After ``close()`` the handle
    neither sends nor receives, including messages already in flight.

    """

    __slots__ = ("_bus", "_closed", "name", "on_message")

    def __init__(self, bus: LocalBus, name: str) -> None:
        self._bus = bus
        self._closed = False
        self.name = name
        self.on_message: Callable[[BusMessage], None] | None = None

    @property
    def closed(self) -> bool:
        return self._closed

    def post(self, message: BusMessage) -> None:
        """Broadcast ``message`` to the other handles on this channel."""
        if self._closed:
            msg = f"Bus handle {self.name!r} is closed"
            raise HerdError(msg)
        self._bus._post(self, message)

    def close(self) -> None:
        """Detach from the bus.  Idempotent."""
        if not self._closed:
            self._closed = True
            self.on_message = None
            self._bus._detach(self)

    def _deliver(self, message: BusMessage) -> None:
        if self._closed or self.on_message is None:
            return
        self.on_message(message)


class LocalBus:
    """In-process hub of named broadcast channels.

    Args:
        latency: Base delivery delay in seconds.
        jitter: Extra random delay in ``[0, jitter)`` per delivery; reorders
            messages when larger than the gap between posts.
        loss: Probability that a single delivery is dropped.
        seed: Seed for the jitter/loss random source.

    """

    def __init__(
        self,
        *,
        latency: float = 0.0,
        jitter: float = 0.0,
        loss: float = 0.0,
        seed: int | None = None,
    ) -> None:
        if latency < 0 or jitter < 0 or not 0.0 <= loss < 1.0:
            msg = f"Invalid bus parameters: latency={latency} jitter={jitter} loss={loss}"
            raise HerdError(msg)
        self._latency = latency
        self._jitter = jitter
        self._loss = loss
        self._random = random.Random(seed)
        self._channels: dict[str, list[BusHandle]] = defaultdict(list)
        self._lock = threading.Lock()
        self.posted = 0
        self.dropped = 0

    @property
    def loss(self) -> float:
        """Drop probability for each delivery; settable to open or close a lossy window."""
        return self._loss

    @loss.setter
    def loss(self, value: float) -> None:
        if not 0.0 <= value < 1.0:
            msg = f"Invalid bus loss: {value}"
            raise HerdError(msg)
        self._loss = value

    def open(self, name: str) -> BusHandle:
        """Open a new handle on channel ``name``."""
        handle = BusHandle(self, name)
        with self._lock:
            self._channels[name].append(handle)
        return handle

    def handle_count(self, name: str) -> int:
        with self._lock:
            return len(self._channels.get(name, ()))

    def _detach(self, handle: BusHandle) -> None:
        with self._lock:
            handles = self._channels.get(handle.name)
            if handles is None:
                return
            if handle in handles:
                handles.remove(handle)
            if not handles:
                del self._channels[handle.name]

    def _post(self, sender: BusHandle, message: BusMessage) -> None:
        loop = asyncio.get_running_loop()
        with self._lock:
            targets = [h for h in self._channels.get(sender.name, ()) if h is not sender]
        self.posted += 1
        for target in targets:
            if self._loss and self._random.random() < self._loss:
                self.dropped += 1
                continue
            delay = self._latency
            if self._jitter:
                delay += self._random.random() * self._jitter
            if delay:
                loop.call_later(delay, target._deliver, message)
            else:
                loop.call_soon(target._deliver, message)
