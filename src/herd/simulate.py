"""In-process simulation — a herd of tabs against real server services.

Starts the server services, opens ``tabs`` tabs on one local bus a few
milliseconds apart, lets the election settle, submits a few todos from a
follower, optionally closes the leader to exercise failover, and reports
the final roles and lists.  Backs ``herd simulate``.
"""

from __future__ import annotations

import asyncio
from contextlib import AsyncExitStack
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING

from herd.observability.collector import StackCollector
from herd.observability.events import now_ns
from herd.observability.log import EventLog
from herd.server.services import build_services
from herd.tabs.bus import LocalBus
from herd.tabs.reconciler import pipeline_submitter
from herd.tabs.tab import Tab

if TYPE_CHECKING:
    from collections.abc import Sequence

    from herd._types import Item, Role, TabID
    from herd.config import HerdConfig
    from herd.observability.events import StackEvent


@dataclass(frozen=True, slots=True)
class SimulationResult:
    """Outcome of a simulation run.

    Attributes:
        roles: Final role of every surviving tab.
        lists: Final local list of every surviving tab.
        server_todos: The server projection at the end of the run.
        closed: Ids of tabs closed during the run.
        events: Every recorded event, oldest first.
        started_ns: Monotonic timestamp of the run start.

    """

    roles: dict[TabID, Role]
    lists: dict[TabID, list[Item]]
    server_todos: list[Item]
    closed: tuple[TabID, ...] = ()
    events: list[StackEvent] = field(default_factory=list)
    started_ns: int = 0

    @property
    def leaders(self) -> list[TabID]:
        return sorted(tab_id for tab_id, role in self.roles.items() if role == "leader")

    @property
    def converged(self) -> bool:
        """One leader, and every tab shows the server's list."""
        return len(self.leaders) == 1 and all(
            todos == self.server_todos for todos in self.lists.values()
        )


async def simulate(
    config: HerdConfig,
    *,
    tabs: int = 3,
    duration: float = 3.0,
    close_leader_after: float | None = None,
    titles: Sequence[str] = ("Buy milk", "Walk the dog"),
    latency: float = 0.0,
    jitter: float = 0.0,
    loss: float = 0.0,
    seed: int | None = None,
    stagger: float = 0.01,
) -> SimulationResult:
    """Run a herd of ``tabs`` tabs for about ``duration`` seconds.

    Args:
        config: Timings, topic and bus channel to use.
        tabs: Number of tabs to open.
        duration: Seconds to keep running after the scripted steps.
        close_leader_after: If set, close the leader this many seconds
            after the mutations and keep running for ``duration``.
        titles: Todos to create from the last tab opened.
        latency: Bus delivery latency.
        jitter: Bus delivery jitter.
        loss: Bus drop probability.
        seed: Seed for bus jitter/loss.
        stagger: Delay between tab starts.

    """
    collector = StackCollector(EventLog(max_events=config.max_events))
    services = build_services(config, collector=collector)
    bus = LocalBus(latency=latency, jitter=jitter, loss=loss, seed=seed)
    submit = pipeline_submitter(services.mutations)
    started_ns = now_ns()
    closed: list[TabID] = []

    async with services, AsyncExitStack() as stack:
        peers: list[Tab] = []
        for _ in range(tabs):
            tab = Tab(
                bus,
                services.channel,
                submit,
                channel_name=config.bus_channel,
                timings=config.election_timings,
                reconnect_delay=config.reconnect_delay,
                collector=collector,
            )
            peers.append(await stack.enter_async_context(tab))
            await asyncio.sleep(stagger)

        await asyncio.sleep(config.election_timings.convergence_bound)

        for title in titles:
            await peers[-1].create(title)

        if close_leader_after is not None:
            await asyncio.sleep(close_leader_after)
            leader = next((t for t in peers if t.is_leader), None)
            if leader is not None:
                await leader.close()
                peers.remove(leader)
                closed.append(leader.tab_id)

        await asyncio.sleep(duration)

        result = SimulationResult(
            roles={t.tab_id: t.role for t in peers},
            lists={t.tab_id: t.todos for t in peers},
            server_todos=services.projection.get(),
            closed=tuple(closed),
            started_ns=started_ns,
        )

    return replace(result, events=collector.log.recent(len(collector.log)))
