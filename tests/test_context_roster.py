"""
Join context resolution and the YAML roster file.
"""
from linguist_bridge.context import parse_participant_metadata, resolve_join_context
from linguist_bridge.languages import Language
from linguist_bridge.roster import RosterEntry, load_roster


def test_parse_participant_metadata_empty():
    assert parse_participant_metadata(None) == {}
    assert parse_participant_metadata("") == {}


def test_parse_participant_metadata_non_json():
    assert parse_participant_metadata("not-json") == {}
    assert parse_participant_metadata("[1, 2]") == {}


def test_parse_participant_metadata_json_object():
    assert parse_participant_metadata('{"language":"hi"}') == {"language": "hi"}


def test_language_prefers_attributes():
    ctx = resolve_join_context(
        participant_id="ravi",
        name="Ravi",
        metadata='{"language":"Spanish"}',
        attributes={"language": "hi-IN"},
    )
    assert ctx.language is Language.HINDI
    assert ctx.language_source == "attributes"


def test_language_falls_back_to_metadata():
    ctx = resolve_join_context(participant_id="ravi", name="Ravi", metadata='{"language":"Spanish"}')
    assert ctx.language is Language.SPANISH
    assert ctx.language_source == "metadata"


def test_language_falls_back_to_roster():
    roster = {"ravi": RosterEntry("ravi", "Ravi K.", Language.HINDI)}

    ctx = resolve_join_context(participant_id="ravi", name=None, attributes={"language": "Klingon"}, roster=roster)

    assert ctx.language is Language.HINDI
    assert ctx.language_source == "roster"
    assert ctx.display_name == "Ravi K."


def test_language_falls_back_to_configured_default():
    ctx = resolve_join_context(participant_id="guest", name="", fallback_language=Language.DUTCH)

    assert ctx.language is Language.DUTCH
    assert ctx.language_source == "fallback"
    assert ctx.display_name == "guest"


def test_load_roster(tmp_path):
    path = tmp_path / "participants.yaml"
    path.write_text(
        "participants:\n"
        "  - id: alice\n"
        "    name: Alice\n"
        "    language: English\n"
        "  - id: ravi\n"
        "    language: hi\n"
        "  - id: zork\n"
        "    language: Klingon\n"
        "  - name: nobody\n",
        encoding="utf-8",
    )

    roster = load_roster(path)

    assert list(roster) == ["alice", "ravi"]
    assert roster["alice"].language is Language.ENGLISH
    assert roster["ravi"].display_name == "ravi"
    assert roster["ravi"].language is Language.HINDI


def test_load_roster_missing_or_unset(tmp_path):
    assert load_roster(None) == {}
    assert load_roster(tmp_path / "absent.yaml") == {}


def test_load_roster_accepts_json(tmp_path):
    path = tmp_path / "participants.json"
    path.write_text('{"participants": [{"id": "bob", "name": "Bob", "language": "es-ES"}]}', encoding="utf-8")

    assert load_roster(path)["bob"].language is Language.SPANISH
