"""
Control API for a running bridge session.

This module exposes:
- Read API: session status, registered participants, pipeline events
- Write API: register/unregister participants, start/stop listening, terminate

Every write command emits auditable events:
control.command_received / control.command_applied.
"""

from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, Field

from linguist_bridge.languages import parse_language
from linguist_bridge.orchestrator import SessionOrchestrator
from observability.events import Component as ObsComponent, EventEmitter, Severity
from observability.event_store import event_store


router = APIRouter(prefix="/control", tags=["control"])
emitter = EventEmitter(ObsComponent.CONTROL_PLANE)


def get_orchestrator(request: Request) -> SessionOrchestrator:
    return request.app.state.orchestrator


class ParticipantModel(BaseModel):
    id: str
    display_name: str
    language: str
    language_code: str
    listening: bool = False


class RegisterRequest(BaseModel):
    id: str = Field(..., min_length=1)
    display_name: Optional[str] = None
    language: str = Field(..., min_length=1, description="Display name or code, e.g. 'Hindi' or 'hi-IN'")


class StopCaptureRequest(BaseModel):
    flush: bool = Field(False, description="Finalize the pending utterance instead of discarding it")


class CommandResponse(BaseModel):
    status: str
    detail: Optional[str] = None


def _new_correlation_id() -> str:
    return f"cmd_{int(time.time() * 1000)}"


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # timestamps without a zone are taken as UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class _Command:
    """Emits the received/applied pair for one control command."""

    def __init__(self, orchestrator: SessionOrchestrator, command: str, **fields):
        self.session_id = orchestrator.session_id
        self.command = command
        self.correlation_id = _new_correlation_id()
        self.fields = fields
        emitter.emit(
            "control.command_received",
            session_id=self.session_id,
            severity=Severity.INFO,
            correlation_id=self.correlation_id,
            command=command,
            **fields,
        )

    def applied(self, **fields) -> None:
        emitter.emit(
            "control.command_applied",
            session_id=self.session_id,
            severity=Severity.INFO,
            correlation_id=self.correlation_id,
            command=self.command,
            result="ok",
            **self.fields,
            **fields,
        )

    def failed(self, status_code: int, detail: str) -> HTTPException:
        emitter.emit(
            "control.command_applied",
            session_id=self.session_id,
            severity=Severity.WARN if status_code < 500 else Severity.ERROR,
            correlation_id=self.correlation_id,
            command=self.command,
            result="error",
            error=detail,
            **self.fields,
        )
        # Stable error surface: no internal traces
        return HTTPException(status_code=status_code, detail=detail)


def _participant_model(orchestrator: SessionOrchestrator, participant) -> ParticipantModel:
    session = orchestrator.captures.get(participant.id)
    return ParticipantModel(
        id=participant.id,
        display_name=participant.display_name,
        language=participant.language.value,
        language_code=participant.language.code,
        listening=bool(session and session.is_active),
    )


# --- Read API ---


@router.get("/status")
async def get_status(orchestrator: SessionOrchestrator = Depends(get_orchestrator)) -> dict:
    """Capture states, active turn and routing counters."""
    return orchestrator.status()


@router.get("/participants", response_model=List[ParticipantModel])
async def list_participants(
    orchestrator: SessionOrchestrator = Depends(get_orchestrator),
) -> List[ParticipantModel]:
    return [_participant_model(orchestrator, p) for p in orchestrator.registry.all()]


@router.get("/events")
async def get_events(
    event_type: Optional[str] = Query(None, description="Filter by event_type (supports 'turn.*')"),
    component: Optional[str] = Query(None, description="Filter by component"),
    correlation_id: Optional[str] = Query(None, description="Filter by correlation id (turn id)"),
    since: Optional[datetime] = Query(None, description="ISO timestamp (inclusive)"),
    until: Optional[datetime] = Query(None, description="ISO timestamp (inclusive)"),
    limit: Optional[int] = Query(None, ge=1, le=1000, description="Max events to return"),
    orchestrator: SessionOrchestrator = Depends(get_orchestrator),
) -> dict:
    """Query pipeline events for this bridge session."""
    events = event_store.query(
        session_id=orchestrator.session_id,
        event_type=event_type,
        component=component,
        correlation_id=correlation_id,
        since=_as_utc(since),
        until=_as_utc(until),
        limit=limit,
    )
    return {
        "session_id": orchestrator.session_id,
        "events": events,
        "count": len(events),
    }


@router.get("/turns/{turn_id}")
async def get_turn_timeline(
    turn_id: str,
    orchestrator: SessionOrchestrator = Depends(get_orchestrator),
) -> dict:
    """Stage-by-stage events of one turn with offsets from its acceptance."""
    timeline = event_store.turn_timeline(turn_id, session_id=orchestrator.session_id)
    if not timeline["events"]:
        raise HTTPException(status_code=404, detail="turn_not_found")
    return timeline


# --- Write API ---


@router.post("/participants", response_model=ParticipantModel, status_code=201)
async def register_participant(
    req: RegisterRequest,
    orchestrator: SessionOrchestrator = Depends(get_orchestrator),
) -> ParticipantModel:
    cmd = _Command(orchestrator, "participant.register", participant_id=req.id)

    language = parse_language(req.language)
    if language is None:
        raise cmd.failed(400, "invalid_language")
    try:
        participant = orchestrator.register_participant(req.id, req.display_name or req.id, language)
    except ValueError:
        raise cmd.failed(409, "participant_conflict")

    cmd.applied(language=language.value)
    return _participant_model(orchestrator, participant)


@router.delete("/participants/{participant_id}", response_model=CommandResponse)
async def unregister_participant(
    participant_id: str,
    orchestrator: SessionOrchestrator = Depends(get_orchestrator),
) -> CommandResponse:
    cmd = _Command(orchestrator, "participant.unregister", participant_id=participant_id)
    removed = await orchestrator.unregister_participant(participant_id)
    if removed is None:
        raise cmd.failed(404, "participant_not_found")
    cmd.applied()
    return CommandResponse(status="ok")


@router.post("/capture/{participant_id}/start", response_model=CommandResponse)
async def start_capture(
    participant_id: str,
    orchestrator: SessionOrchestrator = Depends(get_orchestrator),
) -> CommandResponse:
    cmd = _Command(orchestrator, "capture.start", participant_id=participant_id)

    if participant_id not in orchestrator.registry:
        raise cmd.failed(404, "participant_not_found")
    existing = orchestrator.captures.get(participant_id)
    if existing is not None and existing.is_active:
        raise cmd.failed(409, "capture_already_active")

    session = await orchestrator.start_listening(participant_id)
    if not session.is_active:
        error = session.last_error
        raise cmd.failed(502, f"capture_failed:{type(error).__name__}" if error else "capture_failed")

    cmd.applied(state=session.state.value)
    return CommandResponse(status="ok", detail=session.state.value)


@router.post("/capture/{participant_id}/stop", response_model=CommandResponse)
async def stop_capture(
    participant_id: str,
    req: Optional[StopCaptureRequest] = None,
    orchestrator: SessionOrchestrator = Depends(get_orchestrator),
) -> CommandResponse:
    flush = bool(req and req.flush)
    cmd = _Command(orchestrator, "capture.stop", participant_id=participant_id, flush=flush)

    if participant_id not in orchestrator.registry:
        raise cmd.failed(404, "participant_not_found")

    flushed = await orchestrator.stop_listening(participant_id, flush=flush)
    cmd.applied(flushed=flushed)
    return CommandResponse(status="ok", detail="flushed" if flushed else None)


@router.post("/terminate", response_model=CommandResponse)
async def terminate_session(orchestrator: SessionOrchestrator = Depends(get_orchestrator)) -> CommandResponse:
    cmd = _Command(orchestrator, "session.terminate")
    await orchestrator.terminate()
    cmd.applied()
    return CommandResponse(status="ok")
