"""
Pipeline observability.

Emits the bridge's structured events. The Turn id is the correlation_id for
everything that happens inside a turn. Transcript and translation content is
never emitted, only lengths and languages.
"""

from __future__ import annotations

import time
from typing import Any, Callable, Dict, Optional, TYPE_CHECKING

from logging_setup import get_logger, Component as LogComponent
from observability.events import Component as ObsComponent, EventEmitter, Severity

from .errors import BridgeError, RoutingDrop, classify_upstream_error

if TYPE_CHECKING:
    from .scheduler import Turn


class PipelineObserver:
    """Event emission for routing, capture and turn lifecycle."""

    def __init__(self, session_id: str, *, now: Callable[[], float] = time.perf_counter):
        self.session_id = session_id
        self.emitter = EventEmitter(ObsComponent.PIPELINE, session_id=session_id)
        self.logger = get_logger(LogComponent.ORCHESTRATOR, session_id=session_id)
        self._now = now
        self._stage_started: Dict[str, float] = {}

    # --- routing / capture ---

    def frame_dropped(self, reason: RoutingDrop, source_id: str) -> None:
        severity = Severity.DEBUG if reason == RoutingDrop.BOT_FEEDBACK else Severity.INFO
        self.emitter.emit(
            "routing.dropped",
            severity=severity,
            reason=reason.value,
            source_id=source_id,
        )

    def capture_state_changed(self, participant_id: str, from_state: str, to_state: str) -> None:
        self.emitter.emit(
            "capture.state_changed",
            participant_id=participant_id,
            from_state=from_state,
            to_state=to_state,
        )

    def capture_failed(self, participant_id: str, error: BridgeError) -> None:
        self.emitter.emit(
            "capture.failed",
            severity=Severity.ERROR,
            participant_id=participant_id,
            error_class=type(error).__name__,
            detail=str(error),
        )

    def stt_partial(self, participant_id: str, transcript_length: int, language: Optional[str]) -> None:
        self.emitter.emit(
            "stt.partial",
            severity=Severity.DEBUG,
            participant_id=participant_id,
            transcript_length=transcript_length,
            language=language,
        )

    def stt_final(self, participant_id: str, transcript_length: int, language: Optional[str]) -> None:
        self.emitter.emit(
            "stt.final",
            participant_id=participant_id,
            transcript_length=transcript_length,
            language=language,
        )

    # --- scheduler ---

    def turn_accepted(self, turn: "Turn") -> None:
        self._stage_started[f"{turn.turn_id}:turn"] = self._now()
        self._turn_event("turn.accepted", turn)

    def turn_queued(self, turn: "Turn") -> None:
        self._turn_event("turn.queued", turn)

    def turn_rejected(self, turn: "Turn", reason: str) -> None:
        self._turn_event("turn.rejected", turn, reason=reason)

    # --- stages ---

    def stage_started(self, turn: "Turn", stage: str, **fields: Any) -> None:
        """stage is "translation" or "tts"."""
        self._stage_started[f"{turn.turn_id}:{stage}"] = self._now()
        self._turn_event(f"{stage}.request", turn, **fields)

    def stage_completed(self, turn: "Turn", stage: str, **fields: Any) -> None:
        latency = self._elapsed_ms(f"{turn.turn_id}:{stage}")
        if latency is not None:
            fields["latency_ms"] = latency
        self._turn_event(f"{stage}.response", turn, **fields)

    def stage_failed(self, turn: "Turn", stage: str, error: BaseException) -> None:
        self._elapsed_ms(f"{turn.turn_id}:{stage}")
        self._turn_event(
            f"{stage}.failed",
            turn,
            severity=Severity.ERROR,
            error_class=type(error).__name__,
            category=classify_upstream_error(error),
        )

    def playback_started(self, turn: "Turn", audio_duration_ms: int) -> None:
        self._stage_started[f"{turn.turn_id}:playback"] = self._now()
        self._turn_event("playback.started", turn, audio_duration_ms=audio_duration_ms)

    def playback_completed(self, turn: "Turn") -> None:
        fields: Dict[str, Any] = {}
        latency = self._elapsed_ms(f"{turn.turn_id}:playback")
        if latency is not None:
            fields["latency_ms"] = latency
        self._turn_event("playback.completed", turn, **fields)

    def turn_completed(self, turn: "Turn") -> None:
        fields: Dict[str, Any] = {}
        latency = self._elapsed_ms(f"{turn.turn_id}:turn")
        if latency is not None:
            fields["latency_ms"] = latency
        self._turn_event("turn.completed", turn, **fields)

    def turn_failed(self, turn: "Turn") -> None:
        self._forget(turn)
        self._turn_event(
            "turn.failed",
            turn,
            severity=Severity.WARN,
            error=turn.error,
            error_class=turn.error_class,
            category=turn.error_category,
        )

    # --- helpers ---

    def _forget(self, turn: "Turn") -> None:
        prefix = f"{turn.turn_id}:"
        for key in [k for k in self._stage_started if k.startswith(prefix)]:
            del self._stage_started[key]

    def _elapsed_ms(self, key: str) -> Optional[int]:
        started = self._stage_started.pop(key, None)
        if started is None:
            return None
        return int((self._now() - started) * 1000)

    def _turn_event(self, event_type: str, turn: "Turn", severity: Severity = Severity.INFO, **fields: Any) -> None:
        self.emitter.emit(
            event_type,
            severity=severity,
            correlation_id=turn.turn_id,
            participant_id=turn.source_participant,
            source_language=turn.source_language.value,
            target_languages=[lang.value for lang in turn.target_languages],
            **fields,
        )
