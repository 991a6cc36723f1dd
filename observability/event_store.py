"""
In-memory store of emitted events, read back by the control API.

Bounded FIFO; nothing is persisted (conversation history is never kept).
Events are kept as the dicts that were emitted, with the parsed timestamp
alongside for window queries.
"""

from __future__ import annotations

import threading
from collections import Counter, deque
from datetime import datetime, timezone
from typing import Any, Callable, Deque, Dict, List, Optional, Tuple


Event = Dict[str, Any]

_TURN_OUTCOMES = ("turn.completed", "turn.failed", "turn.rejected")


def _parse_ts(event: Event) -> datetime:
    raw = event.get("ts")
    if isinstance(raw, str):
        return datetime.fromisoformat(raw.replace("Z", "+00:00"))
    return datetime.now(timezone.utc)


def event_type_matcher(pattern: Optional[str]) -> Callable[[str], bool]:
    """"turn.accepted" matches exactly, "turn.*" matches the family."""
    if not pattern:
        return lambda _: True
    if pattern.endswith(".*"):
        prefix = pattern[:-1]
        return lambda event_type: event_type.startswith(prefix)
    return lambda event_type: event_type == pattern


class EventStore:
    """
    In-memory event store.

    A bounded deque keeps memory flat during long meetings; the oldest
    events fall off first. Default capacity: 10,000 events.
    """

    def __init__(self, max_events: int = 10000):
        self._entries: Deque[Tuple[datetime, Event]] = deque(maxlen=max_events)
        self._max_events = max_events
        self._emitted: Counter = Counter()
        self._lock = threading.Lock()

    def store(self, event: Event) -> None:
        entry = (_parse_ts(event), dict(event))
        with self._lock:
            self._entries.append(entry)
            self._emitted[event.get("event_type", "unknown")] += 1

    def query(
        self,
        session_id: Optional[str] = None,
        event_type: Optional[str] = None,
        component: Optional[str] = None,
        correlation_id: Optional[str] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> List[Event]:
        """
        Events matching every given filter, oldest first.

        `since` and `until` are inclusive and must be timezone-aware.
        """
        matches_type = event_type_matcher(event_type)
        exact = {"session_id": session_id, "component": component, "correlation_id": correlation_id}
        exact = {key: value for key, value in exact.items() if value}

        with self._lock:
            snapshot = list(self._entries)

        results: List[Event] = []
        for ts, event in snapshot:
            if since and ts < since:
                continue
            if until and ts > until:
                continue
            if not matches_type(event.get("event_type", "")):
                continue
            if any(event.get(key) != value for key, value in exact.items()):
                continue
            results.append(dict(event))
            if limit and len(results) >= limit:
                break
        return results

    def turn_timeline(self, correlation_id: str, session_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Everything recorded for one turn, with offsets from its first event.

        Returns {"correlation_id", "events": [...], "duration_ms", "outcome"};
        outcome is "completed", "failed" or "rejected", and None while the
        turn is still running.
        """
        with self._lock:
            entries = [
                (ts, event) for ts, event in self._entries
                if event.get("correlation_id") == correlation_id
                and (session_id is None or event.get("session_id") == session_id)
            ]

        if not entries:
            return {"correlation_id": correlation_id, "events": [], "duration_ms": None, "outcome": None}

        start = entries[0][0]
        events = []
        outcome = None
        for ts, event in entries:
            offset_ms = int((ts - start).total_seconds() * 1000)
            events.append({**event, "offset_ms": offset_ms})
            event_type = event.get("event_type", "")
            if event_type in _TURN_OUTCOMES:
                outcome = event_type.split(".", 1)[1]

        return {
            "correlation_id": correlation_id,
            "events": events,
            "duration_ms": events[-1]["offset_ms"],
            "outcome": outcome,
        }

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._emitted.clear()

    def get_stats(self) -> Dict[str, Any]:
        """Store occupancy plus lifetime counts per event type (not reduced by eviction)."""
        with self._lock:
            oldest = self._entries[0][0].isoformat() if self._entries else None
            newest = self._entries[-1][0].isoformat() if self._entries else None
            return {
                "total_events": len(self._entries),
                "max_events": self._max_events,
                "oldest_event_ts": oldest,
                "newest_event_ts": newest,
                "emitted_by_type": dict(self._emitted),
            }


# Process-wide store shared by every EventEmitter
event_store = EventStore()
