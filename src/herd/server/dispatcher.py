"""Broadcast dispatcher — background fan-out of the projection.

The mutation pipeline enqueues a task per commit and returns.  A single
worker task drains the queue: each task rebuilds the projection through the
cache and publishes ``{"todos": [...]}`` to every subscriber.

Failures are discarded, never retried.  A dropped broadcast self-heals on
the next mutation, which publishes the then-current state.
"""

from __future__ import annotations

import asyncio
import sys
import time
from typing import TYPE_CHECKING

from herd._errors import BroadcastError

if TYPE_CHECKING:
    from types import TracebackType

    from herd.observability.collector import StackCollector
    from herd.server.broadcaster import Broadcaster
    from herd.server.projection import CachedProjection


class BroadcastDispatcher:
    """Queue consumer that pushes the current todo list to subscribers.

    Args:
        projection: Cached projection to read (and repopulate) per task.
        broadcaster: Fan-out registry.
        topic: Topic to publish on.
        maxsize: Bound on pending tasks; extra tasks are dropped.
        collector: Optional collector for broadcast events.

    """

    def __init__(
        self,
        projection: CachedProjection,
        broadcaster: Broadcaster,
        *,
        topic: str = "todos",
        maxsize: int = 64,
        collector: StackCollector | None = None,
    ) -> None:
        self._projection = projection
        self._broadcaster = broadcaster
        self._topic = topic
        self._collector = collector
        self._queue: asyncio.Queue[str] = asyncio.Queue(maxsize=maxsize)
        self._task: asyncio.Task[None] | None = None

    @property
    def pending(self) -> int:
        """Number of queued, not yet started tasks."""
        return self._queue.qsize()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def enqueue(self, reason: str = "mutation") -> bool:
        """Submit a broadcast task without waiting for it.

        Returns False when the queue is full.  A task already in the
        queue will publish state at least as new as the dropped one.

        """
        try:
            self._queue.put_nowait(reason)
        except asyncio.QueueFull:
            self._discard(BroadcastError("broadcast queue full"))
            return False
        return True

    async def dispatch(self) -> int:
        """Publish the current projection once.  Returns subscribers notified."""
        t0 = time.perf_counter()
        todos = self._projection.get()
        count = await self._broadcaster.publish(self._topic, {"todos": todos})
        if self._collector is not None:
            self._collector.record_broadcast(
                self._topic,
                todos=len(todos),
                clients_notified=count,
                duration_ms=(time.perf_counter() - t0) * 1000,
            )
        return count

    async def run(self) -> None:
        """Drain the queue forever.  Cancel the task to stop."""
        while True:
            await self._queue.get()
            try:
                await self.dispatch()
            except Exception as exc:
                self._discard(exc)
            finally:
                self._queue.task_done()

    def start(self) -> None:
        """Spawn the worker task on the running loop (idempotent)."""
        if not self.running:
            self._task = asyncio.create_task(self.run(), name="herd-broadcast")

    async def stop(self) -> None:
        """Cancel the worker and wait for it to finish."""
        task, self._task = self._task, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def drain(self) -> None:
        """Wait until every queued task has been processed."""
        await self._queue.join()

    async def __aenter__(self) -> BroadcastDispatcher:
        self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.stop()

    def _discard(self, exc: BaseException) -> None:
        print(f"  Broadcast discarded: {exc}", file=sys.stderr)
        if self._collector is not None:
            self._collector.record_broadcast_discarded(self._topic, error=str(exc))
