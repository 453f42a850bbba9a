"""Broadcaster — pushes todo snapshots to upstream subscribers.

Manages subscriptions per topic and fans a message out to every open
subscriber queue.  The broadcast dispatcher publishes here after each
mutation; the SSE endpoint and in-process upstream clients drain the
per-subscription queues.
"""

from __future__ import annotations

import asyncio
import threading
from collections import defaultdict
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Final

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from herd._types import ClientID

# Queued to end a subscriber's stream (server-side disconnect).
DISCONNECT: Final = object()


@dataclass(frozen=True, slots=True)
class Subscription:
    """An open upstream subscription.

    Attributes:
        client_id: Unique identifier for this subscriber.
        topic: The topic subscribed to (``todos``).
        queue: Pending messages for this subscriber.

    """

    client_id: ClientID
    topic: str
    queue: asyncio.Queue[Any] = field(
        default_factory=lambda: asyncio.Queue(maxsize=256), compare=False, hash=False
    )


class Broadcaster:
    """Tracks subscriptions and delivers messages to them.

    Delivery is at-most-once per publish: a message is enqueued on each
    subscriber's queue once, and dropped for subscribers whose queue is
    full.  Nothing is replayed to later subscribers.

    Thread-safe: subscriber map protected by a lock.

    """

    def __init__(self) -> None:
        self._subscribers: dict[str, set[Subscription]] = defaultdict(set)
        self._lock = threading.Lock()

    @property
    def subscriber_count(self) -> int:
        """Total number of open subscriptions across all topics."""
        with self._lock:
            return sum(len(subs) for subs in self._subscribers.values())

    def subscribe(self, sub: Subscription) -> None:
        """Register a subscription under its topic."""
        with self._lock:
            self._subscribers[sub.topic].add(sub)

    def unsubscribe(self, sub: Subscription) -> None:
        """Remove a subscription.  Removing an unknown one is a no-op."""
        with self._lock:
            subs = self._subscribers.get(sub.topic)
            if subs is None:
                return
            subs.discard(sub)
            if not subs:
                del self._subscribers[sub.topic]

    def get_subscribers(self, topic: str) -> frozenset[Subscription]:
        """Get all subscribers for a topic (snapshot, no lock held on return)."""
        with self._lock:
            return frozenset(self._subscribers.get(topic, set()))

    def get_topics(self) -> frozenset[str]:
        """Get all topics that have at least one subscriber."""
        with self._lock:
            return frozenset(self._subscribers.keys())

    @staticmethod
    def transmit(sub: Subscription, message: Any) -> bool:
        """Deliver a message to one subscriber.  Returns False if dropped."""
        try:
            sub.queue.put_nowait(message)
        except asyncio.QueueFull:
            return False
        return True

    async def publish(self, topic: str, message: Any) -> int:
        """Deliver ``message`` to every subscriber of ``topic``.

        Returns:
            Number of subscribers the message was enqueued for.

        """
        return sum(1 for sub in self.get_subscribers(topic) if self.transmit(sub, message))

    def disconnect(self, topic: str) -> int:
        """End every subscriber stream on ``topic`` and forget the subscriptions.

        Models the server dropping its connections (restart, deploy).
        Subscribers see their stream end and are expected to reconnect.

        Returns:
            Number of subscribers disconnected.

        """
        with self._lock:
            subs = self._subscribers.pop(topic, set())
        for sub in subs:
            # Drop a pending message if needed so the sentinel always lands.
            if sub.queue.full():
                sub.queue.get_nowait()
            sub.queue.put_nowait(DISCONNECT)
        return len(subs)

    async def client_generator(self, sub: Subscription) -> AsyncIterator[Any]:
        """Async generator that yields messages from a subscription's queue.

        Ends when the subscription is disconnected server-side.  Catches
        ``CancelledError`` (client disconnect / task cancellation) and
        ``GeneratorExit`` (generator cleanup) so stream teardown stays quiet.

        """
        try:
            while True:
                message = await sub.queue.get()
                if message is DISCONNECT:
                    return
                yield message
        except (asyncio.CancelledError, GeneratorExit):
            return
