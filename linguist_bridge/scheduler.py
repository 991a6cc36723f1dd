"""
Turn scheduling: at most one translation turn in flight, system-wide.

A single active-turn slot. submit() occupies it when empty and runs the turn
(translate -> synthesize -> play) to completion or failure, then clears it.
While occupied, new turns are rejected ("drop" policy) or parked FIFO with
depth 1 per speaker, newer replacing older ("queue" policy).

submit() is a test-and-set on the event loop thread; call it from the loop.
"""
from __future__ import annotations

import asyncio
import itertools
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Dict, Optional, Tuple, TYPE_CHECKING

from logging_setup import get_logger, Component

from .languages import Language

if TYPE_CHECKING:
    from .observability import PipelineObserver

logger = get_logger(Component.SCHEDULER)

_turn_counter = itertools.count(1)


class TurnStatus(str, Enum):
    PROPOSED = "proposed"
    QUEUED = "queued"
    ACTIVE = "active"
    TRANSLATING = "translating"
    SYNTHESIZING = "synthesizing"
    PLAYING = "playing"
    COMPLETED = "completed"
    FAILED = "failed"
    REJECTED = "rejected"

    @property
    def is_terminal(self) -> bool:
        return self in (TurnStatus.COMPLETED, TurnStatus.FAILED, TurnStatus.REJECTED)


class SubmitResult(str, Enum):
    ACCEPTED = "accepted"
    QUEUED = "queued"
    REJECTED = "rejected"


def new_turn_id() -> str:
    return f"turn_{int(time.time() * 1000)}_{next(_turn_counter)}"


@dataclass
class Turn:
    """One translation cycle for a single finalized utterance."""

    source_participant: str
    source_language: Language
    target_languages: Tuple[Language, ...]
    source_text: str
    turn_id: str = field(default_factory=new_turn_id)
    status: TurnStatus = TurnStatus.PROPOSED
    translations: Dict[Language, str] = field(default_factory=dict)
    error: Optional[str] = None
    error_class: Optional[str] = None
    error_category: Optional[str] = None
    created_at: float = field(default_factory=time.time)

    def __post_init__(self):
        if not self.target_languages:
            raise ValueError("a turn needs at least one target language")

    @property
    def target_language(self) -> Language:
        return self.target_languages[0]

    @property
    def translated_text(self) -> Optional[str]:
        return self.translations.get(self.target_language)

    def to_dict(self) -> dict:
        return {
            "turn_id": self.turn_id,
            "source_participant": self.source_participant,
            "source_language": self.source_language.value,
            "target_languages": [lang.value for lang in self.target_languages],
            "status": self.status.value,
            "error": self.error,
            "error_class": self.error_class,
            "error_category": self.error_category,
        }


TurnRunner = Callable[[Turn], Awaitable[None]]


class TurnScheduler:
    """Owner of the active-turn slot."""

    def __init__(
        self,
        runner: TurnRunner,
        *,
        policy: str = "drop",
        observer: Optional["PipelineObserver"] = None,
    ):
        if policy not in ("drop", "queue"):
            raise ValueError(f"unknown overlap policy: {policy}")
        self.policy = policy
        self._runner = runner
        self._observer = observer
        self._active: Optional[Turn] = None
        self._task: Optional[asyncio.Task] = None
        self._pending: "OrderedDict[str, Turn]" = OrderedDict()
        self._idle = asyncio.Event()
        self._idle.set()
        self.accepted_count = 0
        self.rejected_count = 0

    @property
    def active(self) -> Optional[Turn]:
        return self._active

    @property
    def is_busy(self) -> bool:
        return self._active is not None

    @property
    def pending(self) -> Tuple[Turn, ...]:
        return tuple(self._pending.values())

    def submit(self, turn: Turn) -> SubmitResult:
        """Accept the turn if the slot is empty; otherwise reject or park it."""
        if self._active is None:
            self._start(turn)
            return SubmitResult.ACCEPTED

        if self.policy == "queue":
            superseded = self._pending.pop(turn.source_participant, None)
            if superseded is not None:
                self._reject(superseded, reason="superseded")
            turn.status = TurnStatus.QUEUED
            self._pending[turn.source_participant] = turn
            logger.info(
                "Turn queued",
                turn_id=turn.turn_id,
                participant_id=turn.source_participant,
                active_turn_id=self._active.turn_id,
            )
            if self._observer:
                self._observer.turn_queued(turn)
            return SubmitResult.QUEUED

        self._reject(turn, reason="busy")
        return SubmitResult.REJECTED

    async def wait_idle(self) -> None:
        """Wait until no turn is active or pending."""
        await self._idle.wait()

    def discard_pending(self) -> int:
        """Reject every parked turn (teardown). Returns how many were dropped."""
        dropped = list(self._pending.values())
        self._pending.clear()
        for turn in dropped:
            self._reject(turn, reason="shutdown")
        if self._active is None:
            self._idle.set()
        return len(dropped)

    def _start(self, turn: Turn) -> None:
        self._active = turn
        self._idle.clear()
        turn.status = TurnStatus.ACTIVE
        self.accepted_count += 1
        logger.info(
            "Turn accepted",
            turn_id=turn.turn_id,
            participant_id=turn.source_participant,
            source_language=turn.source_language.value,
            target_languages=[lang.value for lang in turn.target_languages],
        )
        if self._observer:
            self._observer.turn_accepted(turn)
        self._task = asyncio.create_task(self._run(turn), name=turn.turn_id)

    async def _run(self, turn: Turn) -> None:
        try:
            await self._runner(turn)
        except asyncio.CancelledError:
            turn.status = TurnStatus.FAILED
            turn.error = "cancelled"
            turn.error_class = "CancelledError"
            raise
        except Exception as e:
            # runners report their own failures; this only catches runner bugs
            turn.status = TurnStatus.FAILED
            turn.error = str(e)
            turn.error_class = type(e).__name__
            turn.error_category = "internal.runner_crashed"
            logger.exception("Turn runner crashed", turn_id=turn.turn_id, error=str(e))
            if self._observer:
                self._observer.turn_failed(turn)
        finally:
            if not turn.status.is_terminal:
                turn.status = TurnStatus.COMPLETED
            self._active = None
            self._task = None
            self._advance()

    def _advance(self) -> None:
        if self._pending:
            _, next_turn = self._pending.popitem(last=False)
            self._start(next_turn)
        else:
            self._idle.set()

    def _reject(self, turn: Turn, *, reason: str) -> None:
        turn.status = TurnStatus.REJECTED
        turn.error = reason
        self.rejected_count += 1
        logger.info(
            "Turn rejected",
            turn_id=turn.turn_id,
            participant_id=turn.source_participant,
            reason=reason,
        )
        if self._observer:
            self._observer.turn_rejected(turn, reason)
