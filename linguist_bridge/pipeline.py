"""
Turn runner: translate -> synthesize -> play, for every target language of a Turn.

Runs inside the scheduler's active-turn slot. Every failure is converted into
a FAILED turn, a log line and an event here; nothing propagates to the
scheduler.
"""
from __future__ import annotations

from typing import Optional

from logging_setup import get_logger, Component

from .errors import BridgeError, UpstreamError, classify_upstream_error
from .observability import PipelineObserver
from .scheduler import Turn, TurnStatus
from .synthesis import EgressPlayer, SynthesisStage
from .translation import TranslationStage

logger = get_logger(Component.ORCHESTRATOR)


class TurnPipeline:
    def __init__(
        self,
        translation: TranslationStage,
        synthesis: SynthesisStage,
        player: EgressPlayer,
        observer: Optional[PipelineObserver] = None,
    ):
        self.translation = translation
        self.synthesis = synthesis
        self.player = player
        self.observer = observer

    async def run(self, turn: Turn) -> None:
        for target in turn.target_languages:
            stage = "translation"
            try:
                turn.status = TurnStatus.TRANSLATING
                self._started(turn, stage, target_language=target.value)
                translated = await self.translation.translate(turn.source_text, turn.source_language, target)
                turn.translations[target] = translated
                self._completed(turn, stage, target_language=target.value, translated_length=len(translated))
                logger.info_pii("Turn translated", turn_id=turn.turn_id, text=translated)

                stage = "tts"
                turn.status = TurnStatus.SYNTHESIZING
                self._started(turn, stage, target_language=target.value)
                buffer = await self.synthesis.synthesize(translated, target)
                self._completed(turn, stage, target_language=target.value, audio_bytes=len(buffer.pcm))

                stage = "playback"
                turn.status = TurnStatus.PLAYING
                if self.observer:
                    self.observer.playback_started(turn, buffer.duration_ms)
                await self.player.play(buffer)
                if self.observer:
                    self.observer.playback_completed(turn)
            except BridgeError as e:
                self._fail(turn, stage, e)
                return

        turn.status = TurnStatus.COMPLETED
        logger.info(
            "Turn completed",
            turn_id=turn.turn_id,
            participant_id=turn.source_participant,
            targets=[lang.value for lang in turn.target_languages],
        )
        if self.observer:
            self.observer.turn_completed(turn)

    def _started(self, turn: Turn, stage: str, **fields) -> None:
        if self.observer:
            self.observer.stage_started(turn, stage, **fields)

    def _completed(self, turn: Turn, stage: str, **fields) -> None:
        if self.observer:
            self.observer.stage_completed(turn, stage, **fields)

    def _fail(self, turn: Turn, stage: str, error: BridgeError) -> None:
        turn.status = TurnStatus.FAILED
        turn.error = str(error)
        turn.error_class = type(error).__name__
        turn.error_category = (
            classify_upstream_error(error) if isinstance(error, UpstreamError) else "device.sink_failed"
        )
        logger.error(
            "Turn failed",
            turn_id=turn.turn_id,
            stage=stage,
            error=str(error),
            error_type=type(error).__name__,
            category=turn.error_category,
        )
        if self.observer:
            if stage in ("translation", "tts"):
                self.observer.stage_failed(turn, stage, error)
            self.observer.turn_failed(turn)
