"""Server side — persistence, projection cache, mutation pipeline, fan-out.

A committed mutation invalidates the cached projection and enqueues a
broadcast; the dispatcher rebuilds the projection and pushes it to every
upstream subscription (one per leader tab).
"""

from herd.server.broadcaster import Broadcaster, Subscription
from herd.server.channel import TodosChannel
from herd.server.dispatcher import BroadcastDispatcher
from herd.server.mutations import MutationPipeline
from herd.server.projection import CACHE_KEY, CachedProjection
from herd.server.services import TodoServices, build_services
from herd.server.store import MemoryStore, TodoRecord, TodoStore

__all__ = [
    "CACHE_KEY",
    "Broadcaster",
    "BroadcastDispatcher",
    "CachedProjection",
    "MemoryStore",
    "MutationPipeline",
    "Subscription",
    "TodoRecord",
    "TodoServices",
    "TodoStore",
    "TodosChannel",
    "build_services",
]
