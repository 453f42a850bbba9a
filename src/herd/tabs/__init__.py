"""Tab side — election, relay, upstream client and optimistic reconciliation.

One tab per herd holds the upstream connection (the leader) and relays
every snapshot over the local bus; the rest follow.
"""

from herd.tabs.bus import BusHandle, BusMessage, LocalBus
from herd.tabs.election import HeartbeatRecord, LeaderElection
from herd.tabs.reconciler import Mutation, PendingChange, Reconciler, pipeline_submitter
from herd.tabs.tab import Tab, new_tab_id
from herd.tabs.upstream import ChannelTransport, UpstreamChannel

__all__ = [
    "BusHandle",
    "BusMessage",
    "ChannelTransport",
    "HeartbeatRecord",
    "LeaderElection",
    "LocalBus",
    "Mutation",
    "PendingChange",
    "Reconciler",
    "Tab",
    "UpstreamChannel",
    "new_tab_id",
    "pipeline_submitter",
]
