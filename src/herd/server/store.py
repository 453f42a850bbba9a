"""Todo store — the persisted source of truth for the projection.

Persistence is an external collaborator; ``MemoryStore`` is the default
implementation used by ``herd serve`` and the tests.  Any object with the
same methods (a database-backed repository, for instance) can be injected
into the projection and mutation pipeline instead.
"""

from __future__ import annotations

import itertools
import threading
from dataclasses import asdict, dataclass, replace
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Protocol

from herd._errors import NotFoundError

if TYPE_CHECKING:
    from collections.abc import Callable

    from herd._types import Item, ItemID


# Fields exposed to tabs; updated_at stays server-side.
PROJECTED_FIELDS: tuple[str, ...] = ("id", "title", "completed", "created_at")


@dataclass(frozen=True, slots=True)
class TodoRecord:
    """A persisted todo row.

    Attributes:
        id: Primary key, assigned by the store.
        title: Non-blank title (validated by the mutation pipeline).
        completed: Completion flag.
        created_at: ISO-8601 UTC creation time.
        updated_at: ISO-8601 UTC time of the last write.
        seq: Insertion sequence, breaks ``created_at`` ties.

    """

    id: int
    title: str
    completed: bool
    created_at: str
    updated_at: str
    seq: int = 0

    def to_item(self) -> Item:
        """Serialize to the projected ``Item`` shape."""
        return {name: getattr(self, name) for name in PROJECTED_FIELDS}

    def to_dict(self) -> dict[str, object]:
        """Serialize to the full persisted record shape."""
        data = asdict(self)
        del data["seq"]
        return data


class TodoStore(Protocol):
    """What the projection and mutation pipeline need from persistence."""

    def create(self, title: str, *, completed: bool = False) -> TodoRecord: ...

    def update(
        self, item_id: ItemID, *, title: str | None = None, completed: bool | None = None
    ) -> TodoRecord: ...

    def delete(self, item_id: ItemID) -> TodoRecord: ...

    def get(self, item_id: ItemID) -> TodoRecord | None: ...

    def newest_first(self) -> list[TodoRecord]: ...


def _utc_now() -> str:
    return datetime.now(UTC).isoformat()


class MemoryStore:
    """Thread-safe in-memory ``TodoStore``.

    Writes are durable once the method returns: the mutation pipeline
    relies on this to invalidate the projection only after persistence.

    Args:
        clock: Returns the ISO timestamp used for ``created_at``/``updated_at``.

    """

    def __init__(self, clock: Callable[[], str] = _utc_now) -> None:
        self._clock = clock
        self._records: dict[int, TodoRecord] = {}
        self._ids = itertools.count(1)
        self._seq = itertools.count()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def create(self, title: str, *, completed: bool = False) -> TodoRecord:
        now = self._clock()
        with self._lock:
            record = TodoRecord(
                id=next(self._ids),
                title=title,
                completed=completed,
                created_at=now,
                updated_at=now,
                seq=next(self._seq),
            )
            self._records[record.id] = record
            return record

    def update(
        self, item_id: ItemID, *, title: str | None = None, completed: bool | None = None
    ) -> TodoRecord:
        """Apply the given fields to an existing record.

        Raises:
            NotFoundError: If no record has ``item_id``.

        """
        changes: dict[str, object] = {"updated_at": self._clock()}
        if title is not None:
            changes["title"] = title
        if completed is not None:
            changes["completed"] = completed
        with self._lock:
            current = self._records.get(item_id)
            if current is None:
                raise NotFoundError(item_id)
            record = replace(current, **changes)  # type: ignore[arg-type]
            self._records[item_id] = record
            return record

    def delete(self, item_id: ItemID) -> TodoRecord:
        """Remove a record and return it.

        Raises:
            NotFoundError: If no record has ``item_id``.

        """
        with self._lock:
            record = self._records.pop(item_id, None)
        if record is None:
            raise NotFoundError(item_id)
        return record

    def get(self, item_id: ItemID) -> TodoRecord | None:
        with self._lock:
            return self._records.get(item_id)

    def newest_first(self) -> list[TodoRecord]:
        """All records ordered by ``created_at`` descending."""
        with self._lock:
            records = list(self._records.values())
        return sorted(records, key=lambda r: (r.created_at, r.seq), reverse=True)
