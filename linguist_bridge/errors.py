"""
Failure taxonomy for the bridge.

Failures are caught at the component boundary that produced them and turned
into a state transition, a log line and an event. Nothing here is allowed to
terminate the orchestrator.
"""
from enum import Enum
from typing import Optional


class BridgeError(Exception):
    """Base class for bridge failures."""


class DeviceError(BridgeError):
    """Capture device or egress sink unavailable. Fatal to one CaptureSession only."""


class ChannelError(BridgeError):
    """Streaming transcription channel failed or dropped. Session returns to Idle."""


class UpstreamError(BridgeError):
    """Translation or synthesis call failed or timed out. The current Turn fails, no retry."""

    def __init__(self, message: str, *, stage: str, status: Optional[int] = None):
        super().__init__(message)
        self.stage = stage
        self.status = status


class RoutingDrop(str, Enum):
    """Reasons an ingress frame is silently dropped (counted, never raised)."""
    BOT_FEEDBACK = "bot_feedback"
    UNREGISTERED = "unregistered"
    MALFORMED = "malformed"
    NO_CAPTURE_SESSION = "no_capture_session"
    QUEUE_FULL = "queue_full"


class UpstreamErrorCategory:
    """Stable categories attached to turn.failed events."""

    AUTH_FAILED = "upstream.auth_failed"
    RATE_LIMITED = "upstream.rate_limited"
    TIMEOUT = "upstream.timeout"
    NETWORK_ERROR = "upstream.network_error"
    BAD_RESPONSE = "upstream.bad_response"
    UNKNOWN_ERROR = "upstream.unknown_error"


def classify_upstream_error(error: BaseException) -> str:
    """Classify a translation/synthesis failure into a stable category."""
    status = getattr(error, "status", None)
    if status in (401, 403):
        return UpstreamErrorCategory.AUTH_FAILED
    if status == 429:
        return UpstreamErrorCategory.RATE_LIMITED
    if status is not None and 400 <= status < 600:
        return UpstreamErrorCategory.BAD_RESPONSE

    cause = error.__cause__ if error.__cause__ is not None else error
    error_str = str(error).lower()
    cause_type = type(cause).__name__.lower()

    if "timeout" in cause_type or "timeout" in error_str or "timed out" in error_str:
        return UpstreamErrorCategory.TIMEOUT
    if "auth" in error_str or "unauthorized" in error_str or "permission" in error_str:
        return UpstreamErrorCategory.AUTH_FAILED
    if "rate limit" in error_str or "quota" in error_str or "429" in error_str:
        return UpstreamErrorCategory.RATE_LIMITED
    if "connect" in cause_type or "network" in error_str or "connection" in error_str:
        return UpstreamErrorCategory.NETWORK_ERROR
    if "no audio" in error_str or "empty" in error_str or "decode" in error_str:
        return UpstreamErrorCategory.BAD_RESPONSE

    return UpstreamErrorCategory.UNKNOWN_ERROR


def redact_detail(detail: str, secrets: tuple = ()) -> str:
    """Strip credentials from an error detail before it is logged."""
    for secret in secrets:
        if secret:
            detail = detail.replace(secret, "[redacted]")
    if "key=" in detail:
        detail = detail.split("key=")[0] + "key=[redacted]"
    return detail
