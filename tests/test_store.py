"""Tests for herd.server.store — in-memory persisted todos."""

import itertools

import pytest

from herd._errors import NotFoundError
from herd.server.store import PROJECTED_FIELDS, MemoryStore, TodoRecord


def _ticking_clock():
    counter = itertools.count()
    return lambda: f"2026-01-01T00:00:{next(counter):02d}+00:00"


class TestTodoRecord:
    def test_to_item_projects_public_fields(self) -> None:
        record = TodoRecord(1, "Buy milk", False, "t0", "t1", seq=3)
        item = record.to_item()
        assert tuple(item) == PROJECTED_FIELDS
        assert item == {"id": 1, "title": "Buy milk", "completed": False, "created_at": "t0"}

    def test_to_dict_keeps_updated_at(self) -> None:
        data = TodoRecord(1, "Buy milk", False, "t0", "t1", seq=3).to_dict()
        assert data["updated_at"] == "t1"
        assert "seq" not in data


class TestMemoryStore:
    def test_create_assigns_ids(self) -> None:
        store = MemoryStore()
        a = store.create("a")
        b = store.create("b", completed=True)
        assert (a.id, b.id) == (1, 2)
        assert b.completed is True
        assert len(store) == 2

    def test_update_changes_only_given_fields(self) -> None:
        store = MemoryStore(clock=_ticking_clock())
        record = store.create("a")
        updated = store.update(record.id, completed=True)
        assert updated.title == "a"
        assert updated.completed is True
        assert updated.created_at == record.created_at
        assert updated.updated_at != record.updated_at

    def test_update_missing_raises(self) -> None:
        with pytest.raises(NotFoundError):
            MemoryStore().update(99, title="x")

    def test_delete_returns_record(self) -> None:
        store = MemoryStore()
        record = store.create("a")
        assert store.delete(record.id) == record
        assert store.get(record.id) is None

    def test_delete_missing_raises(self) -> None:
        with pytest.raises(NotFoundError):
            MemoryStore().delete(1)

    def test_newest_first(self) -> None:
        store = MemoryStore(clock=_ticking_clock())
        for title in ("old", "mid", "new"):
            store.create(title)
        assert [r.title for r in store.newest_first()] == ["new", "mid", "old"]

    def test_newest_first_breaks_timestamp_ties_by_insertion(self) -> None:
        store = MemoryStore(clock=lambda: "2026-01-01T00:00:00+00:00")
        store.create("first")
        store.create("second")
        assert [r.title for r in store.newest_first()] == ["second", "first"]
