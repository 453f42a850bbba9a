"""Local state reconciler — authoritative snapshots plus optimistic edits.

A tab's list has two writers:

- **Snapshots** (from the upstream channel or the leader's relay) replace
  the whole list.  Last snapshot wins; there is no merge.
- **Optimistic mutations** change the list immediately, before the server
  has seen them.  Each one is a reversible command: the affected item's
  prior state (and position) is captured first, then the change is
  applied, then the mutation is submitted in a background task.

On success the pending record is simply discarded; the next snapshot
carries the committed state.  On failure the captured state is put back
exactly and the record is discarded.

Two edits to the same item resolve last-submitted-wins.  The later edit
inherits the earlier one's ``before``, so the record always holds the
state the server is known to have.  When the earlier edit fails, the item
is rebuilt from that state with only the later edit applied; when it
succeeds, its fields are folded into ``before``.
"""

from __future__ import annotations

import asyncio
import itertools
from collections import Counter
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

from herd._errors import HerdError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Mapping

    from herd._types import Item, ItemID, MutationKind, TabID
    from herd.observability.collector import StackCollector
    from herd.server.mutations import MutationPipeline


@dataclass(frozen=True, slots=True)
class Mutation:
    """A user intent to change the list.

    Attributes:
        kind: ``create``, ``update`` or ``delete``.
        item_id: Target item (None for ``create``).
        fields: ``title`` and/or ``completed`` for create/update.

    """

    kind: MutationKind
    item_id: ItemID | None = None
    fields: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def create(cls, title: str, *, completed: bool = False) -> Mutation:
        return cls("create", None, {"title": title, "completed": completed})

    @classmethod
    def update(cls, item_id: ItemID, **fields: Any) -> Mutation:
        return cls("update", item_id, fields)

    @classmethod
    def delete(cls, item_id: ItemID) -> Mutation:
        return cls("delete", item_id)


@dataclass(frozen=True, slots=True)
class PendingChange:
    """The inverse of one applied optimistic mutation.

    Attributes:
        item_id: Item the change touched (a temporary id for creates).
        before: The item as it was, or None if it did not exist.
        index: Its position in the list before the change.
        mutation: The mutation that was applied.
        seq: Submission order, for last-submitted-wins.

    """

    item_id: ItemID
    before: Item | None
    index: int
    mutation: Mutation
    seq: int

    def revert(self, todos: list[Item]) -> None:
        """Restore ``before`` in ``todos`` in place."""
        _put(todos, self.item_id, self.before, self.index)

    def replay(self, todos: list[Item]) -> None:
        """Rebuild the item in ``todos`` as ``before`` plus this mutation only."""
        _put(todos, self.item_id, _fold(self.before, self.mutation), self.index)


def _index_of(todos: list[Item], item_id: ItemID) -> int | None:
    for i, item in enumerate(todos):
        if item.get("id") == item_id:
            return i
    return None


def _changes(mutation: Mutation) -> dict[str, Any]:
    return {k: v for k, v in mutation.fields.items() if k in ("title", "completed")}


def _fold(before: Item | None, mutation: Mutation) -> Item | None:
    """``before`` with ``mutation`` applied; None once the item is gone."""
    if before is None or mutation.kind != "update":
        return None
    return {**before, **_changes(mutation)}


def _put(todos: list[Item], item_id: ItemID, item: Item | None, index: int) -> None:
    position = _index_of(todos, item_id)
    if item is None:
        if position is not None:
            del todos[position]
    elif position is not None:
        todos[position] = dict(item)
    else:
        todos.insert(min(index, len(todos)), dict(item))


type Submitter = Callable[[Mutation], Awaitable[Item | None]]


class Reconciler:
    """Owns one tab's todo list.

    Args:
        submit: Sends a mutation to the server; raises on rejection.
        tab_id: Owning tab, for event attribution.
        todos: Initial list (e.g. server-rendered props).
        on_change: Called after every local change (snapshot, apply, revert).
        collector: Optional collector for rollback events.

    """

    def __init__(
        self,
        submit: Submitter,
        *,
        tab_id: TabID = "",
        todos: list[Item] | None = None,
        on_change: Callable[[list[Item]], None] | None = None,
        collector: StackCollector | None = None,
    ) -> None:
        self._submit = submit
        self._tab_id = tab_id
        self._todos: list[Item] = [dict(item) for item in todos or ()]
        self._on_change = on_change
        self._collector = collector
        self._pending: dict[ItemID, PendingChange] = {}
        self._in_flight: Counter[ItemID] = Counter()
        self._tasks: set[asyncio.Task[None]] = set()
        self._seq = itertools.count()
        self._temp_ids = itertools.count(-1, -1)
        self.snapshots = 0
        self.rollbacks = 0

    @property
    def todos(self) -> list[Item]:
        """A copy of the current list."""
        return [dict(item) for item in self._todos]

    @property
    def pending(self) -> Mapping[ItemID, PendingChange]:
        """Unacknowledged optimistic changes keyed by item id (read-only)."""
        return MappingProxyType(self._pending)

    def apply_snapshot(self, todos: list[Item]) -> None:
        """Replace the whole list with an authoritative snapshot."""
        self._todos = [dict(item) for item in todos]
        self.snapshots += 1
        self._changed()

    def apply_optimistic(self, mutation: Mutation) -> asyncio.Task[None]:
        """Apply ``mutation`` locally now and submit it in the background.

        The list reflects the change before this method returns; the
        network submission starts on a later loop iteration.

        Returns:
            The submission task (awaiting it is optional).

        Raises:
            HerdError: If an update/delete targets an item not in the list.

        """
        change = self._apply(mutation)
        self._pending[change.item_id] = change
        self._in_flight[change.item_id] += 1
        self._changed()
        task = asyncio.get_running_loop().create_task(self._settle(change))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def aclose(self) -> None:
        """Cancel in-flight submissions and wait for them to stop."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def _apply(self, mutation: Mutation) -> PendingChange:
        seq = next(self._seq)
        if mutation.kind == "create":
            item_id = next(self._temp_ids)
            self._todos.insert(
                0,
                {
                    "id": item_id,
                    "title": mutation.fields.get("title", ""),
                    "completed": bool(mutation.fields.get("completed", False)),
                    "created_at": datetime.now(UTC).isoformat(),
                },
            )
            return PendingChange(item_id, None, 0, mutation, seq)

        assert mutation.item_id is not None
        index = _index_of(self._todos, mutation.item_id)
        if index is None:
            msg = f"Todo {mutation.item_id} is not in the local list"
            raise HerdError(msg)
        before = dict(self._todos[index])
        if mutation.kind == "update":
            self._todos[index] = {**before, **_changes(mutation)}
        else:
            del self._todos[index]
        prior = self._pending.get(mutation.item_id)
        if prior is not None:
            # Same item still in flight: keep the last server-known state.
            return PendingChange(mutation.item_id, prior.before, prior.index, mutation, seq)
        return PendingChange(mutation.item_id, before, index, mutation, seq)

    async def _settle(self, change: PendingChange) -> None:
        try:
            await self._submit(change.mutation)
        except Exception as exc:
            self._fail(change, exc)
        else:
            self._succeed(change)

    def _fail(self, change: PendingChange, exc: Exception) -> None:
        latest = self._pending.get(change.item_id)
        self._release(change.item_id)
        if latest is None:
            # A later failure already restored the server-known state.
            return
        if latest.seq == change.seq:
            self._pending.pop(change.item_id, None)
            change.revert(self._todos)
        else:
            latest.replay(self._todos)
        self.rollbacks += 1
        if self._collector is not None:
            self._collector.record_rollback(
                self._tab_id, change.mutation.kind, change.item_id, error=str(exc)
            )
        self._changed()

    def _succeed(self, change: PendingChange) -> None:
        latest = self._pending.get(change.item_id)
        if self._release(change.item_id) or latest is None:
            return
        if change.mutation.kind != "create":
            self._pending[change.item_id] = replace(
                latest, before=_fold(latest.before, change.mutation)
            )

    def _release(self, item_id: ItemID) -> bool:
        """Count one submission for ``item_id`` as settled.

        Returns:
            True if none remain, in which case the pending record is dropped.

        """
        self._in_flight[item_id] -= 1
        if self._in_flight[item_id] > 0:
            return False
        del self._in_flight[item_id]
        self._pending.pop(item_id, None)
        return True

    def _changed(self) -> None:
        if self._on_change is not None:
            self._on_change(self.todos)


def pipeline_submitter(pipeline: MutationPipeline) -> Submitter:
    """Adapt an in-process ``MutationPipeline`` into a reconciler submitter."""

    async def submit(mutation: Mutation) -> Item | None:
        # Yield once so the request is never issued in the same loop
        # iteration that applied the optimistic change.
        await asyncio.sleep(0)
        if mutation.kind == "create":
            return pipeline.create(
                mutation.fields.get("title", ""),
                completed=bool(mutation.fields.get("completed", False)),
            )
        assert mutation.item_id is not None
        if mutation.kind == "update":
            return pipeline.update(
                mutation.item_id,
                title=mutation.fields.get("title"),
                completed=mutation.fields.get("completed"),
            )
        return pipeline.delete(mutation.item_id)

    return submit
