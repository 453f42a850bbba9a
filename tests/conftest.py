"""Shared test fixtures for herd."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import pytest
import pytest_asyncio

from herd.config import ElectionTimings, HerdConfig
from herd.observability.collector import StackCollector
from herd.server.services import build_services
from herd.tabs.bus import BusMessage, LocalBus
from herd.tabs.reconciler import pipeline_submitter
from herd.tabs.tab import Tab

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable

    from herd.server.services import TodoServices


# Real protocol timings scaled down 5x so election tests finish quickly.
FAST = ElectionTimings(discovery_timeout=0.1, heartbeat_interval=0.4, failure_timeout=1.0)


class RecordingHandle:
    """Stand-in bus handle that records posts instead of delivering them."""

    def __init__(self, name: str = "todos-sync") -> None:
        self.name = name
        self.closed = False
        self.on_message: Callable[[BusMessage], None] | None = None
        self.sent: list[BusMessage] = []

    def post(self, message: BusMessage) -> None:
        self.sent.append(message)

    def close(self) -> None:
        self.closed = True

    def types(self) -> list[str]:
        return [m.type for m in self.sent]


@pytest.fixture
def collector() -> StackCollector:
    return StackCollector()


@pytest.fixture
def config() -> HerdConfig:
    return HerdConfig(
        discovery_timeout=FAST.discovery_timeout,
        heartbeat_interval=FAST.heartbeat_interval,
        failure_timeout=FAST.failure_timeout,
        reconnect_delay=0.05,
    )


@pytest_asyncio.fixture
async def services(config: HerdConfig, collector: StackCollector) -> AsyncIterator[TodoServices]:
    """Server services with the broadcast worker running."""
    async with build_services(config, collector=collector) as svc:
        yield svc


@pytest.fixture
def bus() -> LocalBus:
    return LocalBus()


@pytest.fixture
def make_tab(
    bus: LocalBus, services: TodoServices, collector: StackCollector
) -> Callable[..., Tab]:
    """Factory for tabs wired to the shared bus and services."""

    def _make(tab_id: str | None = None, *, on_bus: LocalBus | None = None) -> Tab:
        return Tab(
            on_bus or bus,
            services.channel,
            pipeline_submitter(services.mutations),
            tab_id=tab_id,
            timings=FAST,
            reconnect_delay=0.05,
            collector=collector,
        )

    return _make


async def settle(seconds: float = 0.0) -> None:
    """Let queued callbacks and tasks run, optionally after a delay."""
    await asyncio.sleep(seconds)
    for _ in range(5):
        await asyncio.sleep(0)
