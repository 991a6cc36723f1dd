"""
Tests for pipeline observability.

Verifies:
- Event taxonomy and correlation by turn id
- Latency measured with an injected clock
- No transcript content in events
"""
import json

from linguist_bridge.errors import RoutingDrop, UpstreamError
from linguist_bridge.languages import Language
from linguist_bridge.observability import PipelineObserver
from linguist_bridge.scheduler import Turn


class Clock:
    def __init__(self):
        self.t = 100.0

    def __call__(self):
        return self.t


def _turn():
    return Turn(
        source_participant="alice",
        source_language=Language.ENGLISH,
        target_languages=(Language.HINDI,),
        source_text="Good morning",
    )


def _last_event(capsys):
    lines = [line for line in capsys.readouterr().out.splitlines() if line.startswith("{")]
    return json.loads(lines[-1])


def test_observer_initialization():
    observer = PipelineObserver(session_id="room-obs")

    assert observer.session_id == "room-obs"


def test_frame_dropped_event(capsys):
    PipelineObserver("room-obs").frame_dropped(RoutingDrop.BOT_FEEDBACK, "LINGUIST_BOT_01")

    event = _last_event(capsys)
    assert event["event_type"] == "routing.dropped"
    assert event["reason"] == "bot_feedback"
    assert event["severity"] == "debug"
    assert event["session_id"] == "room-obs"


def test_stt_events_carry_lengths_only(capsys):
    observer = PipelineObserver("room-obs")

    observer.stt_final("alice", 12, "en-US")

    event = _last_event(capsys)
    assert event["event_type"] == "stt.final"
    assert event["transcript_length"] == 12
    assert event["language"] == "en-US"
    assert "text" not in event


def test_stage_latency_with_injected_clock(capsys):
    clock = Clock()
    observer = PipelineObserver("room-obs", now=clock)
    turn = _turn()

    observer.stage_started(turn, "translation", target_language="Hindi")
    clock.t += 0.25
    observer.stage_completed(turn, "translation", target_language="Hindi")

    event = _last_event(capsys)
    assert event["event_type"] == "translation.response"
    assert event["latency_ms"] == 250
    assert event["correlation_id"] == turn.turn_id
    assert event["target_languages"] == ["Hindi"]


def test_turn_lifecycle_latency(capsys):
    clock = Clock()
    observer = PipelineObserver("room-obs", now=clock)
    turn = _turn()

    observer.turn_accepted(turn)
    clock.t += 1.5
    observer.turn_completed(turn)

    assert _last_event(capsys)["latency_ms"] == 1500


def test_stage_failed_carries_category(capsys):
    observer = PipelineObserver("room-obs")
    turn = _turn()

    observer.stage_started(turn, "tts")
    observer.stage_failed(turn, "tts", UpstreamError("No audio data", stage="synthesis"))

    event = _last_event(capsys)
    assert event["event_type"] == "tts.failed"
    assert event["severity"] == "error"
    assert event["error_class"] == "UpstreamError"
    assert event["category"] == "upstream.bad_response"


def test_turn_rejected_reason(capsys):
    PipelineObserver("room-obs").turn_rejected(_turn(), "busy")

    event = _last_event(capsys)
    assert event["event_type"] == "turn.rejected"
    assert event["reason"] == "busy"


def test_turn_failed_carries_error_class(capsys):
    observer = PipelineObserver("room-obs")
    turn = _turn()
    turn.error = "No audio data"
    turn.error_class = "UpstreamError"
    turn.error_category = "upstream.bad_response"

    observer.turn_accepted(turn)
    observer.stage_started(turn, "tts")
    observer.turn_failed(turn)

    event = _last_event(capsys)
    assert event["event_type"] == "turn.failed"
    assert event["error_class"] == "UpstreamError"
    assert event["category"] == "upstream.bad_response"
    assert observer._stage_started == {}
