"""
Shared logging infrastructure for the Linguist bridge.

Every module logs through get_logger(Component.X). Lines are JSON objects on
stdout carrying the component, the bridge session (meeting room) and any
keyword fields passed at the call site or bound with StructuredLogger.bind().

Transcript and translation text only ever travels in the "pii" field, via
info_pii()/debug_pii(). Set LOG_PII=false to mask it (lengths are kept).
"""

import json
import logging
import os
import re
import sys
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, Optional


class Severity(str, Enum):
    """Log severity levels."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class Component(str, Enum):
    """System components for log tagging."""
    BRIDGE = "bridge"
    ROUTER = "router"
    CAPTURE = "capture"
    STT = "stt"
    TRANSLATION = "translation"
    TTS = "tts"
    PLAYBACK = "playback"
    SCHEDULER = "scheduler"
    ORCHESTRATOR = "orchestrator"
    LIVEKIT_TRANSPORT = "livekit_transport"
    CONTROL_PLANE = "control_plane"


# LogRecord attributes that are not structured fields
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {
    "message", "asctime", "taskName", "component", "session_id",
}

# Chatty third-party loggers, kept at WARNING unless the bridge runs at DEBUG
_NOISY_LOGGERS = ("livekit", "aiohttp.access", "uvicorn.access", "asyncio")

_LATENCY_RE = re.compile(r'("latency_ms"\s*:\s*)(\d+)')


def _env_flag(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _use_color(stream) -> bool:
    if _env_flag("NO_COLOR", False):
        return False
    if _env_flag("FORCE_COLOR", False):
        return True
    try:
        return stream.isatty()
    except (AttributeError, OSError, ValueError):
        return False


def mask_pii(fields: Dict[str, Any]) -> Dict[str, Any]:
    """Replace PII values with a length marker."""
    masked = {}
    for key, value in fields.items():
        if isinstance(value, str):
            masked[key] = f"[masked {len(value)} chars]"
        else:
            masked[key] = "[masked]"
    return masked


class JSONFormatter(logging.Formatter):
    """
    One JSON object per record:
    timestamp, severity, component, session_id (when bound), message, fields.

    latency_ms is rendered with an "ms" unit, highlighted on a terminal.
    """

    ORANGE = '\033[38;5;208m'
    RESET = '\033[0m'

    def __init__(self, *, include_pii: bool = True, color: Optional[bool] = None):
        super().__init__()
        self.include_pii = include_pii
        self.color = color

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "severity": record.levelname.lower(),
            "component": getattr(record, "component", record.name),
            "message": record.getMessage(),
        }
        session_id = getattr(record, "session_id", None)
        if session_id:
            log_data["session_id"] = session_id

        for key, value in record.__dict__.items():
            if key in _RECORD_ATTRS:
                continue
            if key == "pii" and not self.include_pii and isinstance(value, dict):
                value = mask_pii(value)
            log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        output = json.dumps(log_data, ensure_ascii=False, default=str)
        if "latency_ms" not in log_data:
            return output

        color = self.color if self.color is not None else _use_color(sys.stdout)
        unit = rf'\1{self.ORANGE}\2 ms{self.RESET}' if color else r'\1\2 ms'
        return _LATENCY_RE.sub(unit, output)


class StructuredLogger:
    """
    Keyword-field logger bound to a component, and optionally a bridge session
    and extra context fields.

        logger = get_logger(Component.CAPTURE).with_session("standup")
        logger.bind(participant_id="ravi").info("Capture started")
        logger.info_pii("Transcript finalized", text="Good morning")
    """

    def __init__(
        self,
        component: str | Component,
        session_id: Optional[str] = None,
        logger_name: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        self.component = component.value if isinstance(component, Component) else component
        self.session_id = session_id
        self.context = dict(context or {})
        self.logger = logging.getLogger(logger_name or f"linguist.{self.component}")

    def _log(self, level: int, message: str, pii: Optional[Dict[str, Any]] = None, **fields):
        if not self.logger.isEnabledFor(level):
            return
        exc_info = fields.pop("exc_info", None)
        stack_info = fields.pop("stack_info", False)

        extra: Dict[str, Any] = {"component": self.component, **self.context, **fields}
        # an explicit session_id field wins over the bound one
        if self.session_id and "session_id" not in fields:
            extra["session_id"] = self.session_id
        if pii:
            extra["pii"] = pii

        self.logger.log(level, message, exc_info=exc_info, stack_info=stack_info, stacklevel=3, extra=extra)

    def debug(self, message: str, **fields):
        self._log(logging.DEBUG, message, **fields)

    def info(self, message: str, **fields):
        self._log(logging.INFO, message, **fields)

    def warning(self, message: str, **fields):
        self._log(logging.WARNING, message, **fields)

    def error(self, message: str, **fields):
        self._log(logging.ERROR, message, **fields)

    def critical(self, message: str, **fields):
        self._log(logging.CRITICAL, message, **fields)

    def exception(self, message: str, **fields):
        fields.setdefault("exc_info", True)
        self._log(logging.ERROR, message, **fields)

    def debug_pii(self, message: str, **pii_fields):
        """Debug line whose fields are all participant content (e.g. a partial transcript)."""
        self._log(logging.DEBUG, message, pii=pii_fields)

    def info_pii(self, message: str, **pii_fields):
        self._log(logging.INFO, message, pii=pii_fields)

    def with_session(self, session_id: str) -> "StructuredLogger":
        """Same logger bound to a bridge session id."""
        return StructuredLogger(self.component, session_id, self.logger.name, self.context)

    def bind(self, **fields) -> "StructuredLogger":
        """Same logger with extra context fields on every line."""
        return StructuredLogger(self.component, self.session_id, self.logger.name, {**self.context, **fields})


def setup_logging(
    level: str = "INFO",
    use_json: bool = True,
    include_timestamp: bool = True,
    include_pii: Optional[bool] = None,
    quiet: Iterable[str] = _NOISY_LOGGERS,
) -> None:
    """
    Configure the root logger for the bridge process. Call once at startup.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        use_json: JSON lines (True) or plain text (False)
        include_timestamp: Include timestamps in text logs
        include_pii: Log transcript text; defaults to the LOG_PII env flag (on)
        quiet: Third-party loggers held at WARNING unless level is DEBUG
    """
    if include_pii is None:
        include_pii = _env_flag("LOG_PII", True)

    handler = logging.StreamHandler(sys.stdout)
    if use_json:
        handler.setFormatter(JSONFormatter(include_pii=include_pii))
    else:
        fmt = "%(levelname)s - %(component)s - %(message)s"
        if include_timestamp:
            fmt = "%(asctime)s - " + fmt
        handler.setFormatter(logging.Formatter(fmt, defaults={"component": "unknown"}))

    root_logger = logging.getLogger()
    for existing in root_logger.handlers[:]:
        root_logger.removeHandler(existing)
    root_logger.addHandler(handler)

    log_level = getattr(logging, level.upper(), logging.INFO)
    root_logger.setLevel(log_level)
    for name in quiet:
        logging.getLogger(name).setLevel(logging.DEBUG if log_level <= logging.DEBUG else logging.WARNING)


def get_logger(component: str | Component, session_id: Optional[str] = None) -> StructuredLogger:
    """
    Get a structured logger for a component.

    Example:
        logger = get_logger(Component.SCHEDULER, session_id="linguist-meeting")
        logger.info("Turn accepted", turn_id="turn_1")
    """
    return StructuredLogger(component, session_id=session_id)
