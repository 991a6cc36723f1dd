"""
Participant context extraction.

LiveKit participant metadata is a freeform string (commonly JSON) and
attributes are a str->str mapping. This module resolves a joining
participant's display name and declared language from them, falling back to
the roster file and then the configured fallback language.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Mapping, Optional

from .languages import Language, parse_language


@dataclass(frozen=True)
class JoinContext:
    """Resolved identity of a joining participant."""

    participant_id: str
    display_name: str
    language: Language
    language_source: str  # "attributes" | "metadata" | "roster" | "fallback"


def parse_participant_metadata(metadata: Optional[str]) -> dict[str, Any]:
    """
    Parse participant metadata.

    Returns {} if metadata is missing or not a JSON object.
    """
    if not metadata:
        return {}
    try:
        parsed = json.loads(metadata)
    except json.JSONDecodeError:
        return {}
    if not isinstance(parsed, dict):
        return {}
    return parsed


def resolve_join_context(
    *,
    participant_id: str,
    name: Optional[str],
    metadata: Optional[str] = None,
    attributes: Optional[Mapping[str, str]] = None,
    roster: Optional[Mapping[str, Any]] = None,
    fallback_language: Language = Language.ENGLISH,
) -> JoinContext:
    """
    Resolve display name and language.

    Language priority:
    1) participant attribute "language"
    2) metadata JSON key "language"
    3) roster entry for the participant id
    4) fallback language
    """
    md = parse_participant_metadata(metadata)
    roster_entry = (roster or {}).get(participant_id)

    display_name = (name or "").strip()
    if not display_name and isinstance(md.get("name"), str):
        display_name = md["name"].strip()
    if not display_name and roster_entry is not None:
        display_name = roster_entry.display_name
    display_name = display_name or participant_id

    language = parse_language((attributes or {}).get("language"))
    if language is not None:
        return JoinContext(participant_id, display_name, language, "attributes")

    language = parse_language(md.get("language") if isinstance(md.get("language"), str) else None)
    if language is not None:
        return JoinContext(participant_id, display_name, language, "metadata")

    if roster_entry is not None:
        return JoinContext(participant_id, display_name, roster_entry.language, "roster")

    return JoinContext(participant_id, display_name, fallback_language, "fallback")
