"""Todos channel — the server end of a leader tab's upstream connection.

Subscribing registers with the broadcaster and immediately transmits the
current projection, so a freshly elected leader is hydrated without waiting
for the next mutation.  Later messages come only from the dispatcher.
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING, Any

from herd.server.broadcaster import Subscription

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from herd._types import ClientID
    from herd.observability.collector import StackCollector
    from herd.server.broadcaster import Broadcaster
    from herd.server.projection import CachedProjection


class TodosChannel:
    """Subscribe/unsubscribe entry point for the ``todos`` topic.

    Args:
        broadcaster: Fan-out registry shared with the dispatcher.
        projection: Source of the subscribe-time snapshot.
        topic: Topic name.
        collector: Optional collector for connect/close events.

    """

    def __init__(
        self,
        broadcaster: Broadcaster,
        projection: CachedProjection,
        *,
        topic: str = "todos",
        collector: StackCollector | None = None,
    ) -> None:
        self._broadcaster = broadcaster
        self._projection = projection
        self._topic = topic
        self._collector = collector

    @property
    def topic(self) -> str:
        return self._topic

    def subscribe(self, client_id: ClientID | None = None) -> Subscription:
        """Open a subscription and queue ``{"todos": [...]}`` on it right away."""
        sub = Subscription(client_id=client_id or uuid.uuid4().hex[:8], topic=self._topic)
        self._broadcaster.subscribe(sub)
        self._broadcaster.transmit(sub, {"todos": self._projection.get()})
        if self._collector is not None:
            self._collector.record_channel(sub.client_id, "connected", topic=self._topic)
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        self._broadcaster.unsubscribe(sub)
        if self._collector is not None:
            self._collector.record_channel(sub.client_id, "closed", topic=self._topic)

    async def stream(self, sub: Subscription) -> AsyncIterator[Any]:
        """Yield messages for ``sub`` until it is disconnected or cancelled."""
        async for message in self._broadcaster.client_generator(sub):
            yield message
