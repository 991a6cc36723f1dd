"""
Event emission and in-memory event store tests.
"""
import json
import sys
from io import StringIO
from datetime import datetime, timedelta, timezone

import pytest

from observability.events import (
    EventEmitter,
    Component,
    Severity,
    pii_descriptor,
)
from observability.event_store import EventStore


class TestEventFormat:
    """Envelope shared by every emitted event."""

    def test_required_fields(self):
        old_stdout = sys.stdout
        sys.stdout = captured_output = StringIO()

        try:
            emitter = EventEmitter(Component.PIPELINE)
            emitter.emit(
                event_type="turn.accepted",
                session_id="room-events-1",
                severity=Severity.INFO,
            )

            event = json.loads(captured_output.getvalue().strip())

            for key in ("ts", "session_id", "component", "event_type", "severity", "correlation_id", "pii"):
                assert key in event

            assert event["session_id"] == "room-events-1"
            assert event["component"] == "pipeline"
            assert event["event_type"] == "turn.accepted"
            assert event["severity"] == "info"
            # correlation defaults to the session id
            assert event["correlation_id"] == "room-events-1"
            assert event["pii"]["contains_pii"] is False

        finally:
            sys.stdout = old_stdout

    def test_timestamp_format(self):
        buffer = StringIO()
        EventEmitter(Component.ROUTER, stream=buffer).emit("routing.dropped", session_id="room-events-2")

        event = json.loads(buffer.getvalue().strip())
        assert datetime.fromisoformat(event["ts"].replace("Z", "+00:00")).tzinfo is not None

    def test_pii_descriptor(self):
        buffer = StringIO()
        EventEmitter(Component.CAPTURE, stream=buffer).emit(
            "capture.note",
            session_id="room-events-3",
            pii=pii_descriptor("display_name"),
        )

        pii = json.loads(buffer.getvalue().strip())["pii"]
        assert pii["contains_pii"] is True
        assert pii["fields"] == ["display_name"]

    def test_extra_fields_and_return_value(self):
        buffer = StringIO()
        event = EventEmitter(Component.PIPELINE, stream=buffer).emit(
            "tts.response",
            session_id="room-events-4",
            correlation_id="turn_1",
            latency_ms=42,
            audio_bytes=4800,
        )

        assert event["latency_ms"] == 42
        assert event["correlation_id"] == "turn_1"
        assert json.loads(buffer.getvalue().strip()) == event

    def test_emit_uses_current_stdout(self, capsys):
        EventEmitter(Component.CONTROL_PLANE).emit("control.command_received", session_id="room-events-5")

        assert "control.command_received" in capsys.readouterr().out


class TestEventStore:
    def _store(self, store, event_type, session_id="s1", correlation_id=None, ts=None, component="pipeline"):
        store.store({
            "ts": (ts or datetime.now(timezone.utc)).isoformat(),
            "session_id": session_id,
            "component": component,
            "event_type": event_type,
            "severity": "info",
            "correlation_id": correlation_id or session_id,
            "pii": {"contains_pii": False, "fields": [], "handling": "none"},
            "reason": "test",
        })

    def test_query_filters(self):
        store = EventStore()
        self._store(store, "turn.accepted", correlation_id="turn_1")
        self._store(store, "turn.completed", correlation_id="turn_1")
        self._store(store, "routing.dropped", component="router")
        self._store(store, "turn.accepted", session_id="s2")

        assert len(store.query(session_id="s1")) == 3
        assert [e["event_type"] for e in store.query(session_id="s1", event_type="turn.*")] == [
            "turn.accepted",
            "turn.completed",
        ]
        assert len(store.query(correlation_id="turn_1")) == 2
        assert len(store.query(component="router")) == 1
        assert len(store.query(limit=2)) == 2

    def test_query_time_window(self):
        store = EventStore()
        now = datetime.now(timezone.utc)
        self._store(store, "old", ts=now - timedelta(minutes=5))
        self._store(store, "new", ts=now)

        events = store.query(since=now - timedelta(minutes=1))
        assert [e["event_type"] for e in events] == ["new"]

        events = store.query(until=now - timedelta(minutes=1))
        assert [e["event_type"] for e in events] == ["old"]

    def test_payload_is_flattened(self):
        store = EventStore()
        self._store(store, "routing.dropped")

        event = store.query()[0]
        assert event["reason"] == "test"
        assert "payload" not in event

    def test_bounded(self):
        store = EventStore(max_events=3)
        for i in range(5):
            self._store(store, f"e{i}")

        stats = store.get_stats()
        assert stats["total_events"] == 3
        assert stats["max_events"] == 3
        assert [e["event_type"] for e in store.query()] == ["e2", "e3", "e4"]

    def test_clear(self):
        store = EventStore()
        self._store(store, "e")
        store.clear()
        assert store.query() == []
        assert store.get_stats()["oldest_event_ts"] is None

    def test_lifetime_counts_survive_eviction(self):
        store = EventStore(max_events=2)
        for _ in range(3):
            self._store(store, "routing.dropped")

        assert store.get_stats()["emitted_by_type"] == {"routing.dropped": 3}


class TestTurnTimeline:
    def test_offsets_and_outcome(self):
        store = EventStore()
        start = datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc)
        for offset_ms, event_type in ((0, "turn.accepted"), (120, "translation.request"), (900, "turn.completed")):
            store.store({
                "ts": (start + timedelta(milliseconds=offset_ms)).isoformat(),
                "session_id": "s1",
                "event_type": event_type,
                "correlation_id": "turn_7",
            })
        store.store({"ts": start.isoformat(), "session_id": "s1", "event_type": "turn.accepted", "correlation_id": "turn_8"})

        timeline = store.turn_timeline("turn_7")

        assert [e["offset_ms"] for e in timeline["events"]] == [0, 120, 900]
        assert timeline["duration_ms"] == 900
        assert timeline["outcome"] == "completed"
        assert store.turn_timeline("turn_8")["outcome"] is None

    def test_unknown_turn(self):
        timeline = EventStore().turn_timeline("turn_missing")

        assert timeline["events"] == []
        assert timeline["duration_ms"] is None


class TestEmitterValidation:
    def test_bound_session_and_private_store(self):
        store = EventStore()
        emitter = EventEmitter(Component.ROUTER, stream=StringIO(), store=store).for_session("room-bound")

        emitter.emit("routing.dropped", reason="bot_feedback")

        assert store.query()[0]["session_id"] == "room-bound"

    def test_malformed_event_type(self):
        emitter = EventEmitter(Component.PIPELINE, session_id="s", stream=StringIO(), store=EventStore())

        with pytest.raises(ValueError):
            emitter.emit("TurnAccepted")

    def test_missing_session(self):
        with pytest.raises(ValueError):
            EventEmitter(Component.PIPELINE, stream=StringIO(), store=EventStore()).emit("turn.accepted")

    def test_envelope_cannot_be_overwritten(self):
        emitter = EventEmitter(Component.PIPELINE, session_id="s", stream=StringIO(), store=EventStore())

        with pytest.raises(ValueError):
            emitter.emit("turn.accepted", component="other")
