"""Upstream channel client — the leader tab's one persistent connection.

Opened when a tab becomes leader and closed when it steps down.  The
server queues the current list on subscribe, so ``on_snapshot`` fires right
after ``open()`` without waiting for a mutation.  A server-side disconnect (or a
``ChannelError`` from the transport) is logged, not raised: the client
resubscribes after ``reconnect_delay`` and is hydrated again by the
subscribe-time snapshot.
"""

from __future__ import annotations

import asyncio
import sys
from typing import TYPE_CHECKING, Any, Protocol

from herd._errors import ChannelError

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable

    from herd._types import Item
    from herd.observability.collector import StackCollector
    from herd.server.broadcaster import Subscription


class ChannelTransport(Protocol):
    """Server endpoint the client subscribes through (``TodosChannel`` in-process)."""

    @property
    def topic(self) -> str: ...

    def subscribe(self, client_id: str | None = None) -> Subscription: ...

    def unsubscribe(self, sub: Subscription) -> None: ...

    def stream(self, sub: Subscription) -> AsyncIterator[Any]: ...


class UpstreamChannel:
    """Consumes ``{"todos": [...]}`` messages from one subscription.

    Args:
        transport: Server channel to subscribe through.
        on_snapshot: Called with every list received.
        client_id: Identifier sent with the subscription (the tab id).
        reconnect_delay: Seconds to wait before resubscribing after a drop.
        collector: Optional collector for channel and cable events.

    """

    def __init__(
        self,
        transport: ChannelTransport,
        on_snapshot: Callable[[list[Item]], None],
        *,
        client_id: str,
        reconnect_delay: float = 1.0,
        collector: StackCollector | None = None,
    ) -> None:
        self._transport = transport
        self._on_snapshot = on_snapshot
        self._client_id = client_id
        self._reconnect_delay = reconnect_delay
        self._collector = collector
        self._sub: Subscription | None = None
        self._task: asyncio.Task[None] | None = None
        self._closed = False
        self.received = 0
        self.reconnects = 0

    @property
    def connected(self) -> bool:
        return self._sub is not None

    @property
    def is_open(self) -> bool:
        return self._task is not None and not self._closed

    @property
    def finished(self) -> bool:
        """True once the consumer task has stopped (or never started)."""
        return self._task is None or self._task.done()

    def open(self) -> None:
        """Subscribe and start consuming on the running loop.  Idempotent."""
        if self._task is not None or self._closed:
            return
        self._task = asyncio.get_running_loop().create_task(
            self._run(), name=f"herd-upstream-{self._client_id}"
        )

    def close(self) -> None:
        """Stop consuming and unsubscribe.  Safe to call from sync callbacks."""
        if self._closed:
            return
        self._closed = True
        self._unsubscribe()
        if self._task is not None and not self._task.done():
            self._task.cancel()

    async def aclose(self) -> None:
        """``close()`` and wait for the consumer task to finish."""
        self.close()
        task, self._task = self._task, None
        if task is not None:
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def _run(self) -> None:
        topic = self._transport.topic
        while not self._closed:
            try:
                await self._consume()
            except ChannelError as exc:
                error = exc
                self._unsubscribe()
            else:
                error = ChannelError(f"{topic} stream closed by server")
            if self._closed:
                return
            # Non-fatal: log and resubscribe.
            self._sub = None
            print(f"  Upstream {self._client_id}: {error}, reconnecting", file=sys.stderr)
            self._log("cable", f"Disconnected from {topic} channel")
            if self._collector is not None:
                self._collector.record_channel(self._client_id, "disconnected", topic=topic)
                self._collector.record_channel(self._client_id, "reconnecting", topic=topic)
            await asyncio.sleep(self._reconnect_delay)
            self.reconnects += 1

    async def _consume(self) -> None:
        """Subscribe and forward messages until the stream ends.

        Raises:
            ChannelError: If the transport fails to subscribe or drops mid-stream.
                Other transport exceptions are wrapped.

        """
        topic = self._transport.topic
        try:
            self._sub = self._transport.subscribe(self._client_id)
            self._log("cable", f"Connected to {topic} channel")
            async for message in self._transport.stream(self._sub):
                todos = message.get("todos") if isinstance(message, dict) else None
                if todos is None:
                    continue
                self.received += 1
                self._log("cable", f"Received {len(todos)} todos")
                self._on_snapshot(todos)
        except ChannelError:
            raise
        except Exception as exc:
            msg = f"{topic} transport failed: {exc}"
            raise ChannelError(msg) from exc

    def _unsubscribe(self) -> None:
        sub, self._sub = self._sub, None
        if sub is not None:
            self._transport.unsubscribe(sub)

    def _log(self, category: str, message: str) -> None:
        if self._collector is not None:
            self._collector.record_tab(self._client_id, category, message)
