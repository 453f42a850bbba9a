"""Server mutation pipeline — validate, persist, invalidate, enqueue.

Every successful create/update/delete goes through the same tail:

    1. Persist via the store (durable once the call returns)
    2. Invalidate the cached projection, synchronously
    3. Enqueue a broadcast task, without waiting for it

Rejected mutations (blank title, unknown id) stop before step 1 and have
no cache or broadcast side effect.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from herd._errors import NotFoundError, ValidationError

if TYPE_CHECKING:
    from herd._types import Item, ItemID
    from herd.observability.collector import StackCollector
    from herd.server.dispatcher import BroadcastDispatcher
    from herd.server.projection import CachedProjection
    from herd.server.store import TodoRecord, TodoStore


def _validate_title(title: object) -> str:
    if not isinstance(title, str) or not title.strip():
        raise ValidationError("Title can't be blank")
    return title


class MutationPipeline:
    """Applies todo mutations and triggers the cache/broadcast tail.

    Args:
        store: Persisted todos.
        projection: Cache to invalidate after each commit.
        dispatcher: Broadcast queue to notify after each commit.
        collector: Optional collector for commit/reject events.

    """

    def __init__(
        self,
        store: TodoStore,
        projection: CachedProjection,
        dispatcher: BroadcastDispatcher,
        collector: StackCollector | None = None,
    ) -> None:
        self._store = store
        self._projection = projection
        self._dispatcher = dispatcher
        self._collector = collector

    def create(self, title: str, *, completed: bool = False) -> Item:
        """Create a todo.

        Raises:
            ValidationError: If ``title`` is empty or whitespace-only.

        """
        try:
            _validate_title(title)
        except ValidationError as exc:
            self._reject("create", None, exc)
            raise
        record = self._store.create(title, completed=bool(completed))
        return self._committed("create", record)

    def update(
        self,
        item_id: ItemID,
        *,
        title: str | None = None,
        completed: bool | None = None,
    ) -> Item:
        """Update fields of an existing todo.  ``None`` leaves a field unchanged.

        Raises:
            ValidationError: If ``title`` is given but blank.
            NotFoundError: If ``item_id`` does not exist.

        """
        try:
            if title is not None:
                _validate_title(title)
            record = self._store.update(
                item_id,
                title=title,
                completed=None if completed is None else bool(completed),
            )
        except (ValidationError, NotFoundError) as exc:
            self._reject("update", item_id, exc)
            raise
        return self._committed("update", record)

    def delete(self, item_id: ItemID) -> Item:
        """Delete a todo and return it.

        Raises:
            NotFoundError: If ``item_id`` does not exist.

        """
        try:
            record = self._store.delete(item_id)
        except NotFoundError as exc:
            self._reject("delete", item_id, exc)
            raise
        return self._committed("delete", record)

    def _committed(self, kind: str, record: TodoRecord) -> Item:
        # Order matters: the next get() must miss, and the broadcast it
        # triggers must read post-commit state.
        self._projection.invalidate()
        self._dispatcher.enqueue(kind)
        if self._collector is not None:
            self._collector.record_commit(kind, record.id)
        return record.to_item()

    def _reject(self, kind: str, item_id: ItemID | None, exc: Exception) -> None:
        if self._collector is not None:
            self._collector.record_reject(kind, item_id, error=str(exc))
