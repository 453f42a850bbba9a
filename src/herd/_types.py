"""Shared type definitions for herd."""

from typing import Any, Literal

# Ephemeral per-tab identifier, compared lexicographically for tie-breaks
type TabID = str

# Persisted todo primary key
type ItemID = int

# Serialized todo as pushed to tabs: {id, title, completed, created_at}
type Item = dict[str, Any]

# Election state of a single tab
type Role = Literal["idle", "candidate", "leader", "follower"]

# Cross-tab bus message kinds
type MessageType = Literal["discover", "ping", "data"]

# Mutation kinds accepted by the server pipeline
type MutationKind = Literal["create", "update", "delete"]

# Upstream subscriber identifier
type ClientID = str
