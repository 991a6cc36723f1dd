"""
Ingress audio routing.

route() is called for every audio frame coming out of the call transport. It
drops the bot's own synthesized audio (feedback-loop prevention), drops
unregistered or malformed frames, resolves the translation target language(s)
and hands the PCM to the speaker's capture session. It never raises.
"""
from __future__ import annotations

import threading
from collections import Counter
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Set, Tuple

from logging_setup import get_logger, Component

from .errors import RoutingDrop
from .languages import Language
from .registry import Participant, ParticipantRegistry

logger = get_logger(Component.ROUTER)


@dataclass(frozen=True)
class AudioFrame:
    """One ingress audio frame, tagged with the speaking participant's identity."""

    source_id: str
    pcm: bytes
    sample_rate: int
    timestamp_monotonic: int


@dataclass(frozen=True)
class RouteDecision:
    speaker: Participant
    target_languages: Tuple[Language, ...]

    @property
    def target_language(self) -> Language:
        return self.target_languages[0]


# dispatch(speaker, target_languages, pcm) -> None when accepted, else the drop reason
Dispatch = Callable[[Participant, Tuple[Language, ...], bytes], Optional[RoutingDrop]]


class RoutingStats:
    """Thread-safe counters of routed and dropped frames."""

    def __init__(self):
        self._lock = threading.Lock()
        self._routed = 0
        self._dropped: Counter = Counter()

    def routed(self) -> None:
        with self._lock:
            self._routed += 1

    def dropped(self, reason: RoutingDrop) -> None:
        with self._lock:
            self._dropped[reason] += 1

    def dropped_count(self, reason: RoutingDrop) -> int:
        with self._lock:
            return self._dropped[reason]

    def snapshot(self) -> Dict[str, int]:
        with self._lock:
            data = {"routed": self._routed}
            for reason in RoutingDrop:
                data[f"dropped_{reason.value}"] = self._dropped[reason]
            return data


class AudioRouter:
    """Feedback filter + target-language resolution in front of the capture sessions."""

    def __init__(
        self,
        registry: ParticipantRegistry,
        dispatch: Dispatch,
        *,
        fallback_language: Language = Language.ENGLISH,
        target_policy: str = "single",
        on_drop: Optional[Callable[[RoutingDrop, str], None]] = None,
    ):
        if target_policy not in ("single", "fanout"):
            raise ValueError(f"unknown target policy: {target_policy}")
        self.registry = registry
        self.fallback_language = fallback_language
        self.target_policy = target_policy
        self.stats = RoutingStats()
        self._dispatch = dispatch
        self._on_drop = on_drop
        # (reason, source) pairs already reported; later drops are only counted
        self._reported: Set[Tuple[RoutingDrop, str]] = set()

    @property
    def bot_identity(self) -> str:
        return self.registry.bot_identity

    def resolve_targets(self, source_id: str) -> Tuple[Language, ...]:
        """
        Target language(s) for audio spoken by `source_id`.

        Only listeners whose language differs from the speaker's count.
        single: the first such participant's language by registration order.
        fanout: every distinct such language, in registration order.
        Falls back to the configured language when no listener qualifies.
        """
        speaker = self.registry.get(source_id)
        spoken = speaker.language if speaker is not None else None
        targets = []
        for participant in self.registry.others(excluding={source_id, self.bot_identity}):
            if participant.language != spoken and participant.language not in targets:
                targets.append(participant.language)
        if not targets:
            return (self.fallback_language,)
        if self.target_policy == "single":
            return (targets[0],)
        return tuple(targets)

    def route(self, frame: AudioFrame) -> Optional[RouteDecision]:
        """Route one frame. Returns the decision, or None when the frame was dropped."""
        try:
            return self._route(frame)
        except Exception as e:
            logger.warning(
                "Frame routing failed; dropping frame",
                error=str(e),
                error_type=type(e).__name__,
            )
            self._drop(RoutingDrop.MALFORMED, getattr(frame, "source_id", None) or "unknown")
            return None

    def _route(self, frame: AudioFrame) -> Optional[RouteDecision]:
        source_id = frame.source_id

        # Feedback-loop prevention: our own synthesized audio is never routable.
        if source_id == self.bot_identity:
            self._drop(RoutingDrop.BOT_FEEDBACK, source_id)
            return None

        if not _well_formed(frame):
            self._drop(RoutingDrop.MALFORMED, source_id if isinstance(source_id, str) else "unknown")
            return None

        speaker = self.registry.get(source_id)
        if speaker is None:
            self._drop(RoutingDrop.UNREGISTERED, source_id)
            return None

        decision = RouteDecision(speaker=speaker, target_languages=self.resolve_targets(source_id))

        reason = self._dispatch(speaker, decision.target_languages, bytes(frame.pcm))
        if reason is not None:
            self._drop(reason, source_id)
            return None

        self.stats.routed()
        return decision

    def _drop(self, reason: RoutingDrop, source_id: str) -> None:
        self.stats.dropped(reason)
        key = (reason, source_id)
        if key in self._reported:
            return
        self._reported.add(key)
        logger.debug("Frame dropped", reason=reason.value, source_id=source_id)
        if self._on_drop is not None:
            try:
                self._on_drop(reason, source_id)
            except Exception as e:
                logger.warning("Drop callback failed", error=str(e), error_type=type(e).__name__)

    def forget(self, source_id: str) -> None:
        """Re-arm drop reporting for a participant (called when they leave)."""
        self._reported = {key for key in self._reported if key[1] != source_id}


def _well_formed(frame: AudioFrame) -> bool:
    if not isinstance(frame.source_id, str) or not frame.source_id:
        return False
    if not isinstance(frame.pcm, (bytes, bytearray, memoryview)):
        return False
    size = len(frame.pcm)
    # 16-bit linear PCM: non-empty, whole samples only
    if size == 0 or size % 2 != 0:
        return False
    return isinstance(frame.sample_rate, int) and frame.sample_rate > 0
