"""
Participant registry: identity -> display name + declared language.

Pure data, no I/O. Reads (get/others) are lock-free against an immutable
snapshot; register/unregister swap in a new snapshot under a lock, so a
concurrent route() always sees a consistent view.
"""
from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional

from .languages import Language


@dataclass(frozen=True)
class Participant:
    """A call participant. Language is fixed for the lifetime of the session."""

    id: str
    display_name: str
    language: Language


class ParticipantRegistry:
    """Insertion-ordered participant map owned by one bridge session."""

    def __init__(self, bot_identity: str):
        if not bot_identity:
            raise ValueError("bot_identity is required")
        self.bot_identity = bot_identity
        self._participants: Mapping[str, Participant] = {}
        self._write_lock = threading.Lock()

    def register(self, participant_id: str, display_name: str, language: Language) -> Participant:
        """
        Idempotent upsert.

        Re-registering keeps the original position (order is first registration).
        The display name may change; the declared language may not.
        """
        if not participant_id:
            raise ValueError("participant_id is required")
        if participant_id == self.bot_identity:
            raise ValueError("bot identity cannot be registered as a participant")
        if not isinstance(language, Language):
            raise ValueError(f"unsupported language: {language!r}")

        with self._write_lock:
            existing = self._participants.get(participant_id)
            if existing is not None:
                if existing.language != language:
                    raise ValueError(
                        f"participant {participant_id} already declared {existing.language.value}"
                    )
                if existing.display_name == display_name:
                    return existing

            participant = Participant(id=participant_id, display_name=display_name, language=language)
            updated: Dict[str, Participant] = dict(self._participants)
            updated[participant_id] = participant
            self._participants = updated
            return participant

    def unregister(self, participant_id: str) -> Optional[Participant]:
        """Remove a participant. Returns the removed entry, or None if absent."""
        with self._write_lock:
            if participant_id not in self._participants:
                return None
            updated = dict(self._participants)
            removed = updated.pop(participant_id)
            self._participants = updated
            return removed

    def get(self, participant_id: str) -> Optional[Participant]:
        return self._participants.get(participant_id)

    def others(self, excluding: Iterable[str]) -> List[Participant]:
        """Participants not in `excluding`, in registration order."""
        excluded = set(excluding)
        return [p for p in self._participants.values() if p.id not in excluded]

    def all(self) -> List[Participant]:
        return list(self._participants.values())

    def __contains__(self, participant_id: object) -> bool:
        return participant_id in self._participants

    def __len__(self) -> int:
        return len(self._participants)
