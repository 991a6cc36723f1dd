"""
Session orchestrator: owns one bridge session for one meeting.

Wires the call transport (ingress frames, egress sink, join/leave
notifications) to the participant registry, the audio router, one capture
session per listening participant and the turn scheduler. Nothing here is a
process-wide singleton; several orchestrators can run side by side.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Mapping, Optional, Protocol, Set, Tuple

from logging_setup import get_logger, Component

from .capture import CaptureSession, TranscriptionChannel
from .config import BridgeConfig
from .context import resolve_join_context
from .errors import RoutingDrop
from .languages import Language, parse_language
from .observability import PipelineObserver
from .pipeline import TurnPipeline
from .registry import Participant, ParticipantRegistry
from .roster import RosterEntry
from .router import AudioFrame, AudioRouter
from .scheduler import SubmitResult, Turn, TurnScheduler
from .synthesis import EgressPlayer, SynthesisStage
from .translation import TranslationStage

logger = get_logger(Component.ORCHESTRATOR)


@dataclass(frozen=True)
class ParticipantInfo:
    """Join notification from the call transport."""

    participant_id: str
    name: Optional[str] = None
    metadata: Optional[str] = None
    attributes: Mapping[str, str] = field(default_factory=dict)


class CallTransport(Protocol):
    """The meeting connection: ingress frames, egress sink, membership changes."""

    def on_frame(self, callback: Callable[[AudioFrame], Any]) -> None: ...

    def on_participant_joined(self, callback: Callable[[ParticipantInfo], Any]) -> None: ...

    def on_participant_left(self, callback: Callable[[str], Any]) -> None: ...

    async def connect(self) -> None: ...

    async def disconnect(self) -> None: ...

    async def write(self, pcm: bytes, sample_rate: int) -> None: ...

    async def acquire(self, participant_id: str) -> None: ...

    async def release(self, participant_id: str) -> None: ...


class SessionOrchestrator:
    def __init__(
        self,
        config: BridgeConfig,
        *,
        transport: CallTransport,
        channel_factory: Callable[[], TranscriptionChannel],
        translation: TranslationStage,
        synthesis: SynthesisStage,
        roster: Optional[Mapping[str, RosterEntry]] = None,
        observer: Optional[PipelineObserver] = None,
    ):
        self.config = config
        self.session_id = config.meeting_room
        self.transport = transport
        self.roster = dict(roster or {})
        self.observer = observer or PipelineObserver(self.session_id)
        self.fallback_language = parse_language(config.fallback_language) or Language.ENGLISH
        self.logger = logger.with_session(self.session_id)

        self.registry = ParticipantRegistry(config.bot_identity)
        self.router = AudioRouter(
            self.registry,
            self._dispatch,
            fallback_language=self.fallback_language,
            target_policy=config.target_policy,
            on_drop=self.observer.frame_dropped,
        )
        self.player = EgressPlayer(transport)
        self.pipeline = TurnPipeline(translation, synthesis, self.player, self.observer)
        self.scheduler = TurnScheduler(self.pipeline.run, policy=config.overlap_policy, observer=self.observer)
        self.captures: Dict[str, CaptureSession] = {}

        self._channel_factory = channel_factory
        self._background: Set[asyncio.Task] = set()
        self._heartbeat: Optional[asyncio.Task] = None
        self.started = False
        self.terminated = False

    # --- lifecycle ---

    async def start(self) -> None:
        """Hook the transport up and join the meeting."""
        if self.started:
            return
        self.transport.on_frame(self.router.route)
        self.transport.on_participant_joined(self.handle_participant_joined)
        self.transport.on_participant_left(self.handle_participant_left)
        await self.transport.connect()
        self.started = True
        if self.config.heartbeat_seconds > 0:
            self._heartbeat = asyncio.create_task(self._run_heartbeat(), name="bridge-heartbeat")
        self.logger.info(
            "Bridge session started",
            bot_identity=self.config.bot_identity,
            target_policy=self.config.target_policy,
            overlap_policy=self.config.overlap_policy,
        )

    async def terminate(self) -> None:
        """
        Tear the session down.

        Capture sessions are cancelled immediately (unfinalized buffers are
        discarded); a turn already in flight finishes before the egress sink is
        released.
        """
        if self.terminated:
            return
        self.terminated = True
        self.logger.info("Bridge session terminating", active_turn=self._active_turn_id())

        if self._heartbeat is not None:
            self._heartbeat.cancel()
            try:
                await self._heartbeat
            except asyncio.CancelledError:
                pass
            self._heartbeat = None

        for task in list(self._background):
            task.cancel()
        await asyncio.gather(*self._background, return_exceptions=True)

        await asyncio.gather(
            *(session.stop() for session in self.captures.values()),
            return_exceptions=True,
        )
        self.captures.clear()

        dropped = self.scheduler.discard_pending()
        await self.scheduler.wait_idle()
        await self.player.wait_idle()

        try:
            await self.transport.disconnect()
        except Exception as e:
            self.logger.warning("Transport disconnect failed", error=str(e), error_type=type(e).__name__)
        self.logger.info("Bridge session terminated", pending_turns_dropped=dropped)

    # --- membership ---

    def register_participant(self, participant_id: str, display_name: str, language: Language) -> Participant:
        participant = self.registry.register(participant_id, display_name, language)
        self.logger.info(
            "Participant registered",
            participant_id=participant_id,
            language=language.value,
        )
        return participant

    async def unregister_participant(self, participant_id: str) -> Optional[Participant]:
        await self.stop_listening(participant_id)
        removed = self.registry.unregister(participant_id)
        self.router.forget(participant_id)
        if removed is not None:
            self.logger.info("Participant unregistered", participant_id=participant_id)
        return removed

    def handle_participant_joined(self, info: ParticipantInfo) -> Optional[Participant]:
        """Transport callback: register the participant and optionally start listening."""
        if info.participant_id == self.config.bot_identity:
            return None
        try:
            ctx = resolve_join_context(
                participant_id=info.participant_id,
                name=info.name,
                metadata=info.metadata,
                attributes=info.attributes,
                roster=self.roster,
                fallback_language=self.fallback_language,
            )
            participant = self.register_participant(ctx.participant_id, ctx.display_name, ctx.language)
        except ValueError as e:
            self.logger.warning("Participant not registered", participant_id=info.participant_id, error=str(e))
            return None

        if self.config.auto_listen and not self.terminated:
            self._spawn(self.start_listening(participant.id), name=f"listen-{participant.id}")
        return participant

    def handle_participant_left(self, participant_id: str) -> None:
        """Transport callback."""
        if not self.terminated:
            self._spawn(self.unregister_participant(participant_id), name=f"leave-{participant_id}")

    # --- capture ---

    async def start_listening(self, participant_id: str) -> CaptureSession:
        """
        Open a capture session for a registered participant.

        Raises KeyError for unknown participants. An already active session is
        returned as is.
        """
        participant = self.registry.get(participant_id)
        if participant is None:
            raise KeyError(participant_id)

        existing = self.captures.get(participant_id)
        if existing is not None and existing.is_active:
            return existing

        session = CaptureSession(
            participant,
            self._channel_factory,
            on_utterance=self._on_utterance,
            observer=self.observer,
            device=self.transport,
            queue_frames=self.config.capture_queue_frames,
        )
        self.captures[participant_id] = session
        await session.start()
        return session

    async def stop_listening(self, participant_id: str, *, flush: bool = False) -> bool:
        """Stop a participant's capture session. Returns True if an utterance was flushed."""
        session = self.captures.get(participant_id)
        if session is None:
            return False
        return await session.stop(flush=flush)

    def _dispatch(self, speaker: Participant, targets: Tuple[Language, ...], pcm: bytes) -> Optional[RoutingDrop]:
        session = self.captures.get(speaker.id)
        if session is None:
            return RoutingDrop.NO_CAPTURE_SESSION
        return session.push_frame(pcm, targets)

    def _on_utterance(
        self,
        participant: Participant,
        text: str,
        language_code: Optional[str],
        targets: Tuple[Language, ...],
    ) -> Optional[SubmitResult]:
        targets = targets or self.router.resolve_targets(participant.id)
        # listeners who share the speaker's language need no translation
        targets = tuple(lang for lang in targets if lang != participant.language)
        if not targets:
            self.logger.info(
                "Utterance needs no translation",
                participant_id=participant.id,
                language=participant.language.value,
            )
            return None

        turn = Turn(
            source_participant=participant.id,
            source_language=participant.language,
            target_languages=targets,
            source_text=text,
        )
        return self.scheduler.submit(turn)

    # --- status ---

    def status(self) -> Dict[str, Any]:
        active = self.scheduler.active
        return {
            "session_id": self.session_id,
            "started": self.started,
            "terminated": self.terminated,
            "bot_identity": self.config.bot_identity,
            "participants": len(self.registry),
            "capture_sessions": {pid: s.state.value for pid, s in self.captures.items()},
            "active_turn": active.to_dict() if active else None,
            "pending_turns": len(self.scheduler.pending),
            "turns_accepted": self.scheduler.accepted_count,
            "turns_rejected": self.scheduler.rejected_count,
            "is_playing": self.player.is_playing,
            "routing": self.router.stats.snapshot(),
        }

    def _active_turn_id(self) -> Optional[str]:
        active = self.scheduler.active
        return active.turn_id if active else None

    async def _run_heartbeat(self) -> None:
        while True:
            await asyncio.sleep(self.config.heartbeat_seconds)
            status = self.status()
            self.logger.info(
                "Pipeline heartbeat",
                active_turn=self._active_turn_id(),
                capture_sessions=status["capture_sessions"],
                routing=status["routing"],
            )

    def _spawn(self, coro, *, name: str) -> None:
        task = asyncio.create_task(coro, name=name)
        self._background.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            self.logger.error(
                "Background task failed",
                task=task.get_name(),
                error=str(error),
                error_type=type(error).__name__,
            )
