"""
Tests for bridge configuration.

Verifies:
- Configuration loading from environment
- Required fields validation
- Default values and policy parsing
"""
import pytest

from linguist_bridge.config import BridgeConfig

_OPTIONAL_VARS = (
    "API_KEY",
    "MEETING_ROOM",
    "BOT_IDENTITY",
    "FALLBACK_LANGUAGE",
    "PARTICIPANTS_FILE",
    "TARGET_POLICY",
    "OVERLAP_POLICY",
    "AUTO_LISTEN",
    "LIVEKIT_URL",
    "LIVEKIT_API_KEY",
    "LIVEKIT_API_SECRET",
    "CAPTURE_QUEUE_FRAMES",
    "TRANSLATION_TIMEOUT_SECONDS",
    "CONTROL_API_PORT",
    "CONTROL_API_HOST",
)


@pytest.fixture
def clean_env(monkeypatch):
    for name in _OPTIONAL_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("GEMINI_API_KEY", "test_gemini_key")
    return monkeypatch


def test_config_from_env_defaults(clean_env):
    config = BridgeConfig.from_env()

    assert config.gemini_api_key == "test_gemini_key"
    assert config.meeting_room == "linguist-meeting"
    assert config.bot_identity == "LINGUIST_BOT_01"
    assert config.fallback_language == "English"
    assert config.target_policy == "single"
    assert config.overlap_policy == "drop"
    assert config.auto_listen is True
    assert config.capture_sample_rate == 16000
    assert config.tts_sample_rate == 24000
    assert config.capture_queue_frames == 200
    assert config.translation_timeout_seconds == 15.0
    assert config.synthesis_timeout_seconds == 30.0
    assert config.has_livekit_credentials is False
    assert config.control_api_host == "0.0.0.0"


def test_config_from_env_all_fields(clean_env):
    clean_env.setenv("MEETING_ROOM", "standup")
    clean_env.setenv("BOT_IDENTITY", "BOT_X")
    clean_env.setenv("FALLBACK_LANGUAGE", "Hindi")
    clean_env.setenv("TARGET_POLICY", "fanout")
    clean_env.setenv("OVERLAP_POLICY", "Queue")
    clean_env.setenv("AUTO_LISTEN", "false")
    clean_env.setenv("LIVEKIT_URL", "wss://test.livekit.cloud")
    clean_env.setenv("LIVEKIT_API_KEY", "lk_key")
    clean_env.setenv("LIVEKIT_API_SECRET", "lk_secret")
    clean_env.setenv("TRANSLATION_TIMEOUT_SECONDS", "7.5")
    clean_env.setenv("CONTROL_API_HOST", "127.0.0.1")

    config = BridgeConfig.from_env()

    assert config.meeting_room == "standup"
    assert config.bot_identity == "BOT_X"
    assert config.fallback_language == "Hindi"
    assert config.target_policy == "fanout"
    assert config.overlap_policy == "queue"
    assert config.auto_listen is False
    assert config.translation_timeout_seconds == 7.5
    assert config.control_api_host == "127.0.0.1"
    assert config.has_livekit_credentials is True


def test_api_key_alias(clean_env):
    clean_env.delenv("GEMINI_API_KEY")
    clean_env.setenv("API_KEY", "alias_key")

    assert BridgeConfig.from_env().gemini_api_key == "alias_key"


def test_config_missing_api_key(clean_env):
    clean_env.delenv("GEMINI_API_KEY")

    with pytest.raises(KeyError):
        BridgeConfig.from_env()


def test_int_parsing_strips_comments(clean_env):
    clean_env.setenv("CAPTURE_QUEUE_FRAMES", "50  # about one second")
    clean_env.setenv("CONTROL_API_PORT", "not-a-number")

    config = BridgeConfig.from_env()

    assert config.capture_queue_frames == 50
    assert config.control_api_port == 8000


def test_invalid_policy_rejected(clean_env):
    clean_env.setenv("TARGET_POLICY", "broadcast")

    with pytest.raises(ValueError):
        BridgeConfig.from_env()


def test_direct_construction_validates():
    with pytest.raises(ValueError):
        BridgeConfig(gemini_api_key="")
    with pytest.raises(ValueError):
        BridgeConfig(gemini_api_key="k", overlap_policy="interrupt")
    with pytest.raises(ValueError):
        BridgeConfig(gemini_api_key="k", bot_identity="")
