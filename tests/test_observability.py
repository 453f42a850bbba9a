"""Tests for herd.observability — event log, collector and formatting."""

import threading

from herd.observability.collector import StackCollector
from herd.observability.events import (
    BroadcastDiscarded,
    BroadcastEvent,
    CacheEvent,
    ChannelEvent,
    MutationCommitted,
    MutationRejected,
    OptimisticRollback,
    RoleChanged,
    TabEvent,
    now_ns,
)
from herd.observability.log import EventLog, format_event


def _tab_event(tab_id: str = "a", message: str = "Became leader", ts: int = 0) -> TabEvent:
    return TabEvent(tab_id=tab_id, category="leader", message=message, timestamp_ns=ts or now_ns())


# ---------------------------------------------------------------------------
# EventLog
# ---------------------------------------------------------------------------


class TestEventLog:
    """Tests for the event log store."""

    def test_append_and_len(self) -> None:
        log = EventLog()
        assert len(log) == 0
        log.append(_tab_event())
        assert len(log) == 1

    def test_max_events_enforced(self) -> None:
        log = EventLog(max_events=5)
        for i in range(10):
            log.append(_tab_event(message=f"m{i}"))
        assert len(log) == 5
        assert [e.message for e in log.recent(5)] == ["m5", "m6", "m7", "m8", "m9"]  # type: ignore[union-attr]

    def test_query_by_type(self) -> None:
        log = EventLog()
        log.append(_tab_event())
        log.append(MutationCommitted(kind="create", item_id=1, timestamp_ns=now_ns()))
        results = log.query(event_type=MutationCommitted)
        assert len(results) == 1
        assert isinstance(results[0], MutationCommitted)

    def test_query_by_tab_matches_client_id(self) -> None:
        log = EventLog()
        log.append(_tab_event(tab_id="a"))
        log.append(_tab_event(tab_id="b"))
        log.append(ChannelEvent(client_id="a", action="connected", topic="todos", timestamp_ns=now_ns()))
        assert len(log.query(tab_id="a")) == 2
        assert len(log.query(tab_id="b")) == 1

    def test_query_limit(self) -> None:
        log = EventLog()
        for ts in (10, 20, 30, 40):
            log.append(_tab_event(ts=ts))
        assert [e.timestamp_ns for e in log.query(limit=2)] == [40, 30]

    def test_query_most_recent_first(self) -> None:
        log = EventLog()
        log.append(_tab_event(message="first"))
        log.append(_tab_event(message="second"))
        assert log.query()[0].message == "second"  # type: ignore[union-attr]

    def test_stats(self) -> None:
        log = EventLog(max_events=100)
        log.append(_tab_event())
        log.append(_tab_event())
        log.append(CacheEvent(key="k", action="hit", timestamp_ns=now_ns()))
        stats = log.stats()
        assert stats["total"] == 3
        assert stats["by_type"] == {"TabEvent": 2, "CacheEvent": 1}

    def test_thread_safety(self) -> None:
        log = EventLog(max_events=10_000)

        def writer() -> None:
            for _ in range(500):
                log.append(_tab_event())

        threads = [threading.Thread(target=writer) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len(log) == 2000


# ---------------------------------------------------------------------------
# StackCollector
# ---------------------------------------------------------------------------


class TestStackCollector:
    """Every record_* method lands one typed event in the log."""

    def test_default_log(self) -> None:
        assert isinstance(StackCollector().log, EventLog)

    def test_shared_log(self) -> None:
        log = EventLog()
        collector = StackCollector(log)
        collector.record_tab("a", "cable", "Connected to todos channel")
        assert len(log) == 1

    def test_record_role_change(self) -> None:
        collector = StackCollector()
        collector.record_role_change("a", "candidate", "leader", reason="discovery_timeout")
        (event,) = collector.log.recent()
        assert isinstance(event, RoleChanged)
        assert (event.old, event.new, event.reason) == ("candidate", "leader", "discovery_timeout")

    def test_record_rollback(self) -> None:
        collector = StackCollector()
        collector.record_rollback("a", "update", 7, error="Title can't be blank")
        (event,) = collector.log.recent()
        assert isinstance(event, OptimisticRollback)
        assert event.item_id == 7

    def test_record_server_events(self) -> None:
        collector = StackCollector()
        collector.record_commit("create", 1)
        collector.record_reject("update", 2, error="Todo 2 not found")
        collector.record_cache("todos:broadcast_list", "miss")
        collector.record_broadcast("todos", todos=3, clients_notified=2, duration_ms=0.4)
        collector.record_broadcast_discarded("todos", error="boom")
        kinds = [type(e) for e in collector.log.recent()]
        assert kinds == [
            MutationCommitted,
            MutationRejected,
            CacheEvent,
            BroadcastEvent,
            BroadcastDiscarded,
        ]

    def test_record_passes_lifecycle_events_through(self) -> None:
        collector = StackCollector()
        marker = _tab_event()
        collector.record(marker)
        assert collector.log.recent() == [marker]


# ---------------------------------------------------------------------------
# format_event
# ---------------------------------------------------------------------------


class TestFormatEvent:
    def test_tab_event(self) -> None:
        line = format_event(_tab_event(ts=1_500_000_000), origin_ns=1_000_000_000)
        assert line == "+  0.500s [a] leader    Became leader"

    def test_role_changed(self) -> None:
        event = RoleChanged(tab_id="b", old="leader", new="follower", reason="tie_break", timestamp_ns=1)
        assert format_event(event).endswith("[b] role      leader -> follower (tie_break)")

    def test_server_event_owner(self) -> None:
        event = MutationCommitted(kind="create", item_id=4, timestamp_ns=1)
        line = format_event(event)
        assert "[server]" in line
        assert "kind=create" in line
        assert "item_id=4" in line
