"""
Participant roster file: declared languages known before anyone joins.

Stored as YAML (preferred) or JSON; PyYAML's safe_load parses both.

    participants:
      - id: alice
        name: Alice
        language: English
      - id: ravi
        name: Ravi
        language: hi
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Union

import yaml

from logging_setup import get_logger, Component

from .languages import Language, parse_language

logger = get_logger(Component.BRIDGE)


@dataclass(frozen=True)
class RosterEntry:
    participant_id: str
    display_name: str
    language: Language


def _load_file(path: Path) -> dict:
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Roster file {path} must contain a mapping at top-level")
    return data


def load_roster(path: Optional[Union[str, Path]]) -> Dict[str, RosterEntry]:
    """
    Load the roster keyed by participant id.

    A missing path yields an empty roster. Entries with an unknown language
    are skipped with a warning rather than failing startup.
    """
    if not path:
        return {}
    path = Path(path)
    if not path.exists():
        logger.warning("Roster file not found", path=str(path))
        return {}

    data = _load_file(path)
    entries = data.get("participants") or []
    if not isinstance(entries, list):
        raise ValueError(f"Roster file {path}: 'participants' must be a list")

    roster: Dict[str, RosterEntry] = {}
    for raw in entries:
        if not isinstance(raw, dict) or not raw.get("id"):
            logger.warning("Roster entry without id skipped", path=str(path))
            continue
        participant_id = str(raw["id"])
        language = parse_language(str(raw.get("language", "")))
        if language is None:
            logger.warning(
                "Roster entry with unsupported language skipped",
                participant_id=participant_id,
                language=raw.get("language"),
            )
            continue
        roster[participant_id] = RosterEntry(
            participant_id=participant_id,
            display_name=str(raw.get("name") or participant_id),
            language=language,
        )

    logger.info("Roster loaded", path=str(path), participants=len(roster))
    return roster
