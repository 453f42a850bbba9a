"""Herd configuration.

HerdConfig is the central configuration object, frozen after creation.
"""

from dataclasses import dataclass

from herd._errors import ConfigError


@dataclass(frozen=True, slots=True)
class ElectionTimings:
    """Timer parameters for the leader election protocol, in seconds.

    Attributes:
        discovery_timeout: How long a starting tab waits for a ``ping``
            before claiming leadership.
        heartbeat_interval: Period of the leader's ``ping``.
        failure_timeout: Silence after which a follower promotes itself.

    """

    discovery_timeout: float = 0.5
    heartbeat_interval: float = 2.0
    failure_timeout: float = 5.0

    def __post_init__(self) -> None:
        if min(self.discovery_timeout, self.heartbeat_interval, self.failure_timeout) <= 0:
            msg = f"Election timings must be positive: {self}"
            raise ConfigError(msg)
        if self.failure_timeout <= self.heartbeat_interval:
            msg = (
                f"failure_timeout ({self.failure_timeout}s) must exceed "
                f"heartbeat_interval ({self.heartbeat_interval}s)"
            )
            raise ConfigError(msg)

    @property
    def convergence_bound(self) -> float:
        """Upper bound on election convergence after the last tab joins."""
        return self.discovery_timeout + self.heartbeat_interval


@dataclass(frozen=True, slots=True)
class HerdConfig:
    """Configuration for a Herd server and its tabs.

    Attributes:
        host: Bind address for ``herd serve``.
        port: Bind port for ``herd serve``.
        discovery_timeout: Election discovery window in seconds.
        heartbeat_interval: Leader ping period in seconds.
        failure_timeout: Follower promotion timeout in seconds.
        cache_ttl: Lifetime of the cached todo projection in seconds.
        broadcast_queue_size: Bound on pending broadcast tasks.
        bus_channel: Name of the cross-tab broadcast channel.
        topic: Upstream subscription topic.
        reconnect_delay: Delay before the upstream client resubscribes.
        max_events: Capacity of the event log ring buffer.

    """

    host: str = "127.0.0.1"
    port: int = 3000
    discovery_timeout: float = 0.5
    heartbeat_interval: float = 2.0
    failure_timeout: float = 5.0
    cache_ttl: float = 3600.0
    broadcast_queue_size: int = 64
    bus_channel: str = "todos-sync"
    topic: str = "todos"
    reconnect_delay: float = 1.0
    max_events: int = 10_000

    def __post_init__(self) -> None:
        # ElectionTimings validates on construction.
        _ = self.election_timings
        if self.cache_ttl <= 0:
            msg = f"cache_ttl must be positive, got {self.cache_ttl}"
            raise ConfigError(msg)
        if self.broadcast_queue_size < 1:
            msg = f"broadcast_queue_size must be >= 1, got {self.broadcast_queue_size}"
            raise ConfigError(msg)

    @property
    def election_timings(self) -> ElectionTimings:
        """Election timer parameters derived from this config."""
        return ElectionTimings(
            discovery_timeout=self.discovery_timeout,
            heartbeat_interval=self.heartbeat_interval,
            failure_timeout=self.failure_timeout,
        )
