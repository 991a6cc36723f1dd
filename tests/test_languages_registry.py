"""
Language parsing, voice profiles and the participant registry.
"""
import pytest

from linguist_bridge.languages import Language, VOICE_PROFILES, parse_language, voice_for
from linguist_bridge.registry import ParticipantRegistry

BOT = "LINGUIST_BOT_01"


@pytest.mark.parametrize("value", ["Hindi", "HINDI", "hindi", "hi", "hi-IN", " hi-in "])
def test_parse_language_accepts_names_and_codes(value):
    assert parse_language(value) is Language.HINDI


@pytest.mark.parametrize("value", [None, "", "   ", "Klingon", "xx-XX"])
def test_parse_language_rejects_unknown(value):
    assert parse_language(value) is None


def test_voice_profiles():
    assert voice_for(Language.HINDI) == "Puck"
    assert voice_for(Language.ENGLISH) == "Kore"
    # every declarable language has a fixed voice
    assert set(VOICE_PROFILES) == set(Language)


def test_language_codes():
    assert Language.ENGLISH.code == "en-US"
    assert Language.HINDI.code == "hi-IN"


class TestParticipantRegistry:
    def test_register_and_get(self):
        registry = ParticipantRegistry(BOT)
        p = registry.register("alice", "Alice", Language.ENGLISH)

        assert registry.get("alice") == p
        assert "alice" in registry
        assert len(registry) == 1

    def test_register_is_idempotent(self):
        registry = ParticipantRegistry(BOT)
        first = registry.register("alice", "Alice", Language.ENGLISH)
        again = registry.register("alice", "Alice", Language.ENGLISH)

        assert again == first
        assert len(registry) == 1

    def test_reregister_keeps_position_and_updates_name(self):
        registry = ParticipantRegistry(BOT)
        registry.register("alice", "Alice", Language.ENGLISH)
        registry.register("ravi", "Ravi", Language.HINDI)
        registry.register("alice", "Alice B.", Language.ENGLISH)

        assert [p.id for p in registry.all()] == ["alice", "ravi"]
        assert registry.get("alice").display_name == "Alice B."

    def test_language_is_fixed(self):
        registry = ParticipantRegistry(BOT)
        registry.register("alice", "Alice", Language.ENGLISH)

        with pytest.raises(ValueError):
            registry.register("alice", "Alice", Language.HINDI)
        assert registry.get("alice").language is Language.ENGLISH

    def test_bot_identity_cannot_register(self):
        registry = ParticipantRegistry(BOT)

        with pytest.raises(ValueError):
            registry.register(BOT, "Bot", Language.ENGLISH)
        assert BOT not in registry

    def test_rejects_undeclared_language(self):
        registry = ParticipantRegistry(BOT)

        with pytest.raises(ValueError):
            registry.register("alice", "Alice", "English")

    def test_unregister(self):
        registry = ParticipantRegistry(BOT)
        registry.register("alice", "Alice", Language.ENGLISH)

        assert registry.unregister("alice").id == "alice"
        assert registry.unregister("alice") is None
        assert registry.get("alice") is None

    def test_others_in_registration_order(self):
        registry = ParticipantRegistry(BOT)
        registry.register("ravi", "Ravi", Language.HINDI)
        registry.register("alice", "Alice", Language.ENGLISH)
        registry.register("bob", "Bob", Language.SPANISH)

        assert [p.id for p in registry.others(excluding={"alice"})] == ["ravi", "bob"]
