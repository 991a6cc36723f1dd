"""
Bridge configuration.

Loads provider credentials, the meeting handle and pipeline policies from
environment variables.
"""
import os
from dataclasses import dataclass
from typing import Optional


TARGET_POLICIES = ("single", "fanout")
OVERLAP_POLICIES = ("drop", "queue")


def _strip_comment(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    if "#" in value:
        value = value.split("#")[0]
    value = value.strip()
    return value or None


def _parse_int_env(key: str, default: int) -> int:
    """
    Parse integer environment variable, stripping comments and whitespace.

    Handles cases like:
    - "300  # comment" -> 300
    - "300" -> 300
    - None -> default
    """
    value = _strip_comment(os.environ.get(key))
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _parse_float_env(key: str, default: float) -> float:
    value = _strip_comment(os.environ.get(key))
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _parse_bool_env(key: str, default: bool) -> bool:
    value = _strip_comment(os.environ.get(key))
    if value is None:
        return default
    return value.lower() in ("1", "true", "yes", "on")


def _parse_choice_env(key: str, choices: tuple, default: str) -> str:
    value = _strip_comment(os.environ.get(key))
    if value is None:
        return default
    value = value.lower()
    if value not in choices:
        raise ValueError(f"{key} must be one of {', '.join(choices)} (got {value!r})")
    return value


@dataclass
class BridgeConfig:
    """Bridge configuration."""

    # Gemini (speech-to-text, translation, text-to-speech)
    gemini_api_key: str

    # Meeting / call transport
    meeting_room: str = "linguist-meeting"
    livekit_url: Optional[str] = None
    livekit_api_key: Optional[str] = None
    livekit_api_secret: Optional[str] = None

    # Reserved identity of the bot's own egress audio
    bot_identity: str = "LINGUIST_BOT_01"

    # Routing
    fallback_language: str = "English"
    participants_file: Optional[str] = None
    target_policy: str = "single"  # "single" | "fanout"
    auto_listen: bool = True

    # Turn scheduling
    overlap_policy: str = "drop"  # "drop" | "queue"

    # Models
    gemini_live_model: str = "gemini-2.5-flash-native-audio-preview-12-2025"
    gemini_translation_model: str = "gemini-3-flash-preview"
    gemini_tts_model: str = "gemini-2.5-flash-preview-tts"

    # Upstream timeouts
    translation_timeout_seconds: float = 15.0
    synthesis_timeout_seconds: float = 30.0

    # Audio
    capture_sample_rate: int = 16000
    tts_sample_rate: int = 24000
    capture_queue_frames: int = 200

    # Control API
    control_api_host: str = "0.0.0.0"
    control_api_port: int = 8000
    heartbeat_seconds: int = 30

    def __post_init__(self):
        if not self.gemini_api_key:
            raise ValueError("gemini_api_key is required")
        if not self.bot_identity:
            raise ValueError("bot_identity is required")
        if self.target_policy not in TARGET_POLICIES:
            raise ValueError(f"target_policy must be one of {TARGET_POLICIES}")
        if self.overlap_policy not in OVERLAP_POLICIES:
            raise ValueError(f"overlap_policy must be one of {OVERLAP_POLICIES}")

    @property
    def has_livekit_credentials(self) -> bool:
        return bool(self.livekit_url and self.livekit_api_key and self.livekit_api_secret)

    @classmethod
    def from_env(cls) -> "BridgeConfig":
        """Load configuration from environment variables."""
        api_key = os.environ.get("GEMINI_API_KEY") or os.environ.get("API_KEY")
        if not api_key:
            # same failure mode as os.environ[...] for a required variable
            raise KeyError("GEMINI_API_KEY")

        return cls(
            gemini_api_key=api_key,
            meeting_room=os.environ.get("MEETING_ROOM", "linguist-meeting"),
            livekit_url=os.environ.get("LIVEKIT_URL"),
            livekit_api_key=os.environ.get("LIVEKIT_API_KEY"),
            livekit_api_secret=os.environ.get("LIVEKIT_API_SECRET"),
            bot_identity=os.environ.get("BOT_IDENTITY", "LINGUIST_BOT_01"),
            fallback_language=os.environ.get("FALLBACK_LANGUAGE", "English"),
            participants_file=os.environ.get("PARTICIPANTS_FILE") or None,
            target_policy=_parse_choice_env("TARGET_POLICY", TARGET_POLICIES, "single"),
            auto_listen=_parse_bool_env("AUTO_LISTEN", True),
            overlap_policy=_parse_choice_env("OVERLAP_POLICY", OVERLAP_POLICIES, "drop"),
            gemini_live_model=os.environ.get(
                "GEMINI_LIVE_MODEL", "gemini-2.5-flash-native-audio-preview-12-2025"
            ),
            gemini_translation_model=os.environ.get("GEMINI_TRANSLATION_MODEL", "gemini-3-flash-preview"),
            gemini_tts_model=os.environ.get("GEMINI_TTS_MODEL", "gemini-2.5-flash-preview-tts"),
            translation_timeout_seconds=_parse_float_env("TRANSLATION_TIMEOUT_SECONDS", 15.0),
            synthesis_timeout_seconds=_parse_float_env("SYNTHESIS_TIMEOUT_SECONDS", 30.0),
            tts_sample_rate=_parse_int_env("TTS_SAMPLE_RATE", default=24000),
            capture_queue_frames=_parse_int_env("CAPTURE_QUEUE_FRAMES", default=200),
            control_api_host=os.environ.get("CONTROL_API_HOST", "0.0.0.0"),
            control_api_port=_parse_int_env("CONTROL_API_PORT", default=8000),
            heartbeat_seconds=_parse_int_env("HEARTBEAT_SECONDS", default=30),
        )


def get_config() -> BridgeConfig:
    """Get or create global config instance."""
    global _config
    if _config is None:
        _config = BridgeConfig.from_env()
    return _config


# Global config instance (lazy loaded)
_config: Optional[BridgeConfig] = None
