"""
Transcript accumulation for one capture session.

The speech service resends cumulative partials ("Hel", "Hello", "Hello wor"),
so the latest value replaces the buffer; a final event hands the text over and
resets the buffer to empty.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class TranscriptEvent:
    """A partial or final recognition result from the speech service."""

    text: str
    is_final: bool = False
    language_code: Optional[str] = None


class TranscriptAccumulator:
    """Growing text buffer for one utterance."""

    def __init__(self):
        self._buffer = ""
        self._language_code: Optional[str] = None
        self.partials_seen = 0

    @property
    def buffer(self) -> str:
        return self._buffer

    @property
    def language_code(self) -> Optional[str]:
        return self._language_code

    def apply(self, event: TranscriptEvent) -> Optional[str]:
        """
        Apply one event in receipt order.

        Returns the finalized text when the event is final and carries speech,
        otherwise None.
        """
        if event.text:
            self._buffer = event.text
        if event.language_code:
            self._language_code = event.language_code
        if not event.is_final:
            self.partials_seen += 1
            return None
        return self.finalize()

    def finalize(self) -> Optional[str]:
        """Hand over the buffered text and reset. Blank utterances yield None."""
        text = self._buffer.strip()
        self.reset()
        return text or None

    def reset(self) -> None:
        self._buffer = ""
        self._language_code = None
        self.partials_seen = 0
