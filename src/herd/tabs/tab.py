"""Tab — one peer in the herd.

Composes a bus handle, a leader election engine, a reconciler and (while
leader) an upstream channel.  The leader applies every upstream snapshot
locally and relays it over the bus; followers apply relayed snapshots.

``async with Tab(...)`` is the scoped lifetime: entering joins the herd,
exiting cancels every timer and task, closes the upstream subscription if
leader, and closes the bus handle.
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

from herd.tabs.election import LeaderElection
from herd.tabs.reconciler import Mutation, Reconciler
from herd.tabs.upstream import UpstreamChannel

if TYPE_CHECKING:
    import asyncio
    from types import TracebackType

    from herd._types import Item, ItemID, Role, TabID
    from herd.config import ElectionTimings
    from herd.observability.collector import StackCollector
    from herd.tabs.bus import BusHandle, LocalBus
    from herd.tabs.reconciler import Submitter
    from herd.tabs.upstream import ChannelTransport


def new_tab_id() -> TabID:
    """Return a fresh ephemeral tab id (8 hex characters)."""
    return uuid.uuid4().hex[:8]


class Tab:
    """A browser-tab peer.

    Args:
        bus: Local bus shared by all tabs of the user.
        transport: Server channel the leader subscribes through.
        submit: Sends mutations to the server.
        tab_id: Fixed id (tests); a random one is generated otherwise.
        channel_name: Bus channel to join.
        timings: Election timings.
        reconnect_delay: Upstream resubscribe delay.
        todos: Initial list, as rendered with the page.
        collector: Optional collector shared with the server.

    """

    def __init__(
        self,
        bus: LocalBus,
        transport: ChannelTransport,
        submit: Submitter,
        *,
        tab_id: TabID | None = None,
        channel_name: str = "todos-sync",
        timings: ElectionTimings | None = None,
        reconnect_delay: float = 1.0,
        todos: list[Item] | None = None,
        collector: StackCollector | None = None,
    ) -> None:
        self.tab_id = tab_id or new_tab_id()
        self._bus = bus
        self._channel_name = channel_name
        self._transport = transport
        self._reconnect_delay = reconnect_delay
        self._collector = collector
        self._handle: BusHandle | None = None
        self._upstream: UpstreamChannel | None = None
        self._closing: list[UpstreamChannel] = []
        self.reconciler = Reconciler(
            submit, tab_id=self.tab_id, todos=todos, collector=collector
        )
        self._timings = timings
        self.election: LeaderElection | None = None

    # ----- State -----

    @property
    def role(self) -> Role:
        return self.election.role if self.election is not None else "idle"

    @property
    def is_leader(self) -> bool:
        return self.role == "leader"

    @property
    def upstream(self) -> UpstreamChannel | None:
        """The open upstream channel while leader, else None."""
        return self._upstream

    @property
    def todos(self) -> list[Item]:
        return self.reconciler.todos

    @property
    def todo_count(self) -> int:
        return len(self.reconciler.todos)

    @property
    def completed_count(self) -> int:
        return sum(1 for item in self.reconciler.todos if item.get("completed"))

    # ----- Lifecycle -----

    async def start(self) -> None:
        """Open the bus handle and begin discovery."""
        self._handle = self._bus.open(self._channel_name)
        self.election = LeaderElection(
            self._handle,
            self.tab_id,
            timings=self._timings,
            on_promote=self._open_upstream,
            on_demote=self._close_upstream,
            on_data=self.reconciler.apply_snapshot,
            collector=self._collector,
        )
        self.election.start()

    async def close(self) -> None:
        """Tear the tab down.  Idempotent."""
        if self.election is not None:
            self.election.close()
        for upstream in self._closing:
            await upstream.aclose()
        self._closing.clear()
        await self.reconciler.aclose()
        if self._handle is not None:
            self._handle.close()

    async def __aenter__(self) -> Tab:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()

    # ----- Mutations -----

    def create(self, title: str, *, completed: bool = False) -> asyncio.Task[None]:
        return self.reconciler.apply_optimistic(Mutation.create(title, completed=completed))

    def update(self, item_id: ItemID, **fields: object) -> asyncio.Task[None]:
        return self.reconciler.apply_optimistic(Mutation.update(item_id, **fields))

    def delete(self, item_id: ItemID) -> asyncio.Task[None]:
        return self.reconciler.apply_optimistic(Mutation.delete(item_id))

    # ----- Election callbacks -----

    def _open_upstream(self) -> None:
        self._upstream = UpstreamChannel(
            self._transport,
            self._on_upstream_snapshot,
            client_id=self.tab_id,
            reconnect_delay=self._reconnect_delay,
            collector=self._collector,
        )
        self._upstream.open()

    def _close_upstream(self) -> None:
        upstream, self._upstream = self._upstream, None
        if upstream is not None:
            upstream.close()
            self._closing = [u for u in self._closing if not u.finished]
            self._closing.append(upstream)

    def _on_upstream_snapshot(self, todos: list[Item]) -> None:
        self.reconciler.apply_snapshot(todos)
        if self.election is not None:
            self.election.relay(todos)
