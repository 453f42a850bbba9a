"""Server services — the injected singletons behind the HTTP surface.

``TodoServices`` owns one store, one projection cache, one broadcaster and
one dispatcher for the lifetime of the process.  Use it as an async
context manager (or call ``start``/``stop`` from app lifecycle hooks) so
the dispatcher worker is scoped to the running event loop.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from herd.observability.collector import StackCollector
from herd.observability.log import EventLog
from herd.server.broadcaster import Broadcaster
from herd.server.channel import TodosChannel
from herd.server.dispatcher import BroadcastDispatcher
from herd.server.mutations import MutationPipeline
from herd.server.projection import CachedProjection
from herd.server.store import MemoryStore

if TYPE_CHECKING:
    from types import TracebackType

    from herd.config import HerdConfig
    from herd.server.store import TodoStore


@dataclass(slots=True)
class TodoServices:
    """Wired server components.

    Attributes:
        store: Persisted todos.
        projection: Cached serialized list.
        broadcaster: Subscription registry.
        channel: Subscribe-time snapshot entry point.
        dispatcher: Background broadcast worker.
        mutations: Create/update/delete pipeline.
        collector: Shared observability collector.

    """

    store: TodoStore
    projection: CachedProjection
    broadcaster: Broadcaster
    channel: TodosChannel
    dispatcher: BroadcastDispatcher
    mutations: MutationPipeline
    collector: StackCollector = field(default_factory=StackCollector)

    async def start(self) -> None:
        self.dispatcher.start()

    async def stop(self) -> None:
        await self.dispatcher.stop()

    async def __aenter__(self) -> TodoServices:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.stop()


def build_services(
    config: HerdConfig,
    *,
    store: TodoStore | None = None,
    collector: StackCollector | None = None,
) -> TodoServices:
    """Wire the server components from config.

    Args:
        config: Resolved HerdConfig.
        store: Persistence to use; defaults to a fresh ``MemoryStore``.
        collector: Shared collector; defaults to one sized by ``config.max_events``.

    """
    if collector is None:
        collector = StackCollector(EventLog(max_events=config.max_events))
    if store is None:
        store = MemoryStore()
    projection = CachedProjection(store, ttl=config.cache_ttl, collector=collector)
    broadcaster = Broadcaster()
    dispatcher = BroadcastDispatcher(
        projection,
        broadcaster,
        topic=config.topic,
        maxsize=config.broadcast_queue_size,
        collector=collector,
    )
    return TodoServices(
        store=store,
        projection=projection,
        broadcaster=broadcaster,
        channel=TodosChannel(broadcaster, projection, topic=config.topic, collector=collector),
        dispatcher=dispatcher,
        mutations=MutationPipeline(store, projection, dispatcher, collector),
        collector=collector,
    )
