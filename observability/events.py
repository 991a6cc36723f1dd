"""
Structured JSON events for the bridge.

One envelope for every event: ts, session_id, component, event_type,
severity, correlation_id and a pii descriptor. Events go to stdout as JSON
lines and into the in-memory event store the control API reads.
"""

from __future__ import annotations

import json
import re
import sys
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, TextIO

from .event_store import EventStore, event_store


class Component(str, Enum):
    """Event-producing components."""

    PIPELINE = "pipeline"
    ROUTER = "router"
    CAPTURE = "capture"
    CONTROL_PLANE = "control_plane"


class Severity(str, Enum):
    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


# "<family>.<name>", lowercase, e.g. "turn.accepted" or "capture.state_changed"
EVENT_TYPE_RE = re.compile(r"^[a-z][a-z0-9_]*(\.[a-z][a-z0-9_]*)+$")

DEFAULT_PII = {"contains_pii": False, "fields": [], "handling": "none"}


def pii_descriptor(*fields: str, handling: str = "none") -> Dict[str, Any]:
    """Descriptor for events whose named fields hold participant names or speech."""
    return {"contains_pii": True, "fields": list(fields), "handling": handling}


class EventEmitter:
    """
    Emits events for one component.

    session_id may be bound at construction; emit() falls back to it.
    Output goes to `stream` when given, otherwise to the current sys.stdout.
    """

    def __init__(
        self,
        component: Component,
        *,
        session_id: Optional[str] = None,
        stream: Optional[TextIO] = None,
        store: Optional[EventStore] = None,
    ):
        self.component = component
        self.session_id = session_id
        self._stream = stream
        self._store = store if store is not None else event_store

    def for_session(self, session_id: str) -> "EventEmitter":
        return EventEmitter(self.component, session_id=session_id, stream=self._stream, store=self._store)

    def emit(
        self,
        event_type: str,
        session_id: Optional[str] = None,
        severity: Severity = Severity.INFO,
        correlation_id: Optional[str] = None,
        pii: Optional[Dict[str, Any]] = None,
        **fields: Any,
    ) -> Dict[str, Any]:
        """
        Emit one event and return it.

        correlation_id is a turn id or command id; it defaults to the session
        id. Raises ValueError for a malformed event_type or a missing session.
        """
        if not EVENT_TYPE_RE.match(event_type):
            raise ValueError(f"malformed event type: {event_type!r}")
        session_id = session_id or self.session_id
        if not session_id:
            raise ValueError(f"event {event_type} has no session_id")

        event: Dict[str, Any] = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "session_id": session_id,
            "component": self.component.value,
            "event_type": event_type,
            "severity": Severity(severity).value,
            "correlation_id": correlation_id or session_id,
            "pii": pii or dict(DEFAULT_PII),
        }
        for key, value in fields.items():
            if key in event:
                raise ValueError(f"field {key!r} would overwrite the event envelope")
            event[key] = value

        stream = self._stream or sys.stdout
        stream.write(json.dumps(event, ensure_ascii=False, default=str) + "\n")
        stream.flush()

        self._store.store(event)
        return event
