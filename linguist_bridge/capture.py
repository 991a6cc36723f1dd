"""
Capture sessions: one streaming transcription channel per listening participant.

State machine:

    Idle -> Connecting -> Streaming -> Finalizing -> Streaming (continuous) | Idle
    Connecting -> Failed -> Idle
    Connecting | Streaming | Finalizing -> Stopping -> Idle
    Streaming -> Failed -> Idle

push_frame() is the ingress path and never blocks: frames go into a bounded
queue that a separate task drains into the network channel. Failures do not
retry; the caller has to start listening again.
"""
from __future__ import annotations

import asyncio
import uuid
from enum import Enum
from typing import AsyncIterator, Callable, Optional, Protocol, Tuple, TYPE_CHECKING

from logging_setup import get_logger, Component

from .errors import BridgeError, ChannelError, DeviceError, RoutingDrop
from .languages import Language
from .registry import Participant
from .transcript import TranscriptAccumulator, TranscriptEvent

if TYPE_CHECKING:
    from .observability import PipelineObserver

logger = get_logger(Component.CAPTURE)


class CaptureState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    STREAMING = "streaming"
    FINALIZING = "finalizing"
    STOPPING = "stopping"
    FAILED = "failed"


_TRANSITIONS = {
    CaptureState.IDLE: {CaptureState.CONNECTING},
    CaptureState.CONNECTING: {CaptureState.STREAMING, CaptureState.FAILED, CaptureState.STOPPING},
    CaptureState.STREAMING: {CaptureState.FINALIZING, CaptureState.STOPPING, CaptureState.FAILED},
    CaptureState.FINALIZING: {
        CaptureState.STREAMING,
        CaptureState.IDLE,
        CaptureState.STOPPING,
        CaptureState.FAILED,
    },
    CaptureState.STOPPING: {CaptureState.IDLE},
    CaptureState.FAILED: {CaptureState.IDLE},
}


class TranscriptionChannel(Protocol):
    """Bidirectional streaming speech-to-text session."""

    async def open(self, language_hint: str) -> None:
        """Connect; returns once the service acknowledged the session."""

    async def send(self, pcm: bytes) -> None:
        """Send 16 kHz mono 16-bit linear PCM."""

    def events(self) -> AsyncIterator[TranscriptEvent]:
        """Partial/final transcript events in receipt order. Ends when the channel closes."""

    async def close(self) -> None:
        """Close the channel. Safe to call more than once."""


class CaptureDevice(Protocol):
    """Source of a participant's audio (e.g. a subscribed call track)."""

    async def acquire(self, participant_id: str) -> None: ...

    async def release(self, participant_id: str) -> None: ...


# on_utterance(participant, text, language_code, target_languages)
UtteranceHandler = Callable[[Participant, str, Optional[str], Tuple[Language, ...]], None]


class CaptureSession:
    """Listening state for one participant, from start to stop."""

    def __init__(
        self,
        participant: Participant,
        channel_factory: Callable[[], TranscriptionChannel],
        *,
        on_utterance: UtteranceHandler,
        observer: Optional["PipelineObserver"] = None,
        device: Optional[CaptureDevice] = None,
        queue_frames: int = 200,
        continuous: bool = True,
        session_id: Optional[str] = None,
    ):
        self.session_id = session_id or f"cap_{uuid.uuid4().hex[:12]}"
        self.participant = participant
        self.language_hint = participant.language.code
        self.continuous = continuous
        self.state = CaptureState.IDLE
        self.transcript = TranscriptAccumulator()
        self.target_languages: Tuple[Language, ...] = ()
        self.last_error: Optional[BridgeError] = None
        self.frames_sent = 0

        self._channel_factory = channel_factory
        self._on_utterance = on_utterance
        self._observer = observer
        self._device = device
        self._queue_frames = queue_frames
        self._channel: Optional[TranscriptionChannel] = None
        self._queue: Optional[asyncio.Queue] = None
        self._sender: Optional[asyncio.Task] = None
        self._receiver: Optional[asyncio.Task] = None
        self._device_acquired = False
        self.logger = logger.bind(capture_id=self.session_id, participant_id=participant.id)

    @property
    def transcript_buffer(self) -> str:
        return self.transcript.buffer

    @property
    def is_active(self) -> bool:
        return self.state in (CaptureState.CONNECTING, CaptureState.STREAMING, CaptureState.FINALIZING)

    # --- lifecycle ---

    async def start(self) -> bool:
        """
        Start listening: acquire the device, open the channel, begin streaming.

        Returns True once Streaming. Device or channel failures end in Idle
        with `last_error` set.
        """
        if self.state != CaptureState.IDLE:
            self.logger.warning("Start ignored; capture session busy", state=self.state.value)
            return False

        self.last_error = None
        self._transition(CaptureState.CONNECTING)

        if self._device is not None:
            try:
                await self._device.acquire(self.participant.id)
                self._device_acquired = True
            except Exception as e:
                await self._fail(DeviceError(f"capture device unavailable: {e}"))
                return False
            if self.state != CaptureState.CONNECTING:
                await self._release()
                return False

        try:
            self._channel = self._channel_factory()
            await self._channel.open(self.language_hint)
        except Exception as e:
            if self.state != CaptureState.CONNECTING:
                # stopped while connecting
                return False
            await self._fail(ChannelError(f"transcription channel failed to open: {e}"))
            return False

        if self.state != CaptureState.CONNECTING:
            return False

        self._queue = asyncio.Queue(maxsize=self._queue_frames)
        self._transition(CaptureState.STREAMING)
        self._sender = asyncio.create_task(self._drain_frames(), name=f"{self.session_id}-send")
        self._receiver = asyncio.create_task(self._receive_events(), name=f"{self.session_id}-recv")
        return True

    async def stop(self, *, flush: bool = False) -> bool:
        """
        Stop listening.

        The unfinalized buffer is discarded unless `flush` is set, in which case
        it is finalized into an utterance first. Returns True if an utterance was
        handed over.
        """
        if not self.is_active:
            return False

        handed_over = False
        if flush and self.state == CaptureState.STREAMING:
            self._transition(CaptureState.FINALIZING)
            text = self.transcript.finalize()
            if text:
                handed_over = self._hand_over(text, None)

        discarded = len(self.transcript.buffer)
        self._transition(CaptureState.STOPPING)
        await self._release()
        self.transcript.reset()
        self._transition(CaptureState.IDLE)
        self.logger.info(
            "Capture stopped",
            discarded_chars=discarded,
            flushed=handed_over,
        )
        return handed_over

    # --- ingress ---

    def push_frame(self, pcm: bytes, target_languages: Tuple[Language, ...]) -> Optional[RoutingDrop]:
        """
        Enqueue one frame for the network channel without blocking.

        Must be called from the event loop thread. Returns a drop reason when the
        frame was not accepted.
        """
        if self.state != CaptureState.STREAMING or self._queue is None:
            return RoutingDrop.NO_CAPTURE_SESSION
        self.target_languages = target_languages
        try:
            self._queue.put_nowait(pcm)
        except asyncio.QueueFull:
            return RoutingDrop.QUEUE_FULL
        return None

    # --- tasks ---

    async def _drain_frames(self) -> None:
        assert self._queue is not None and self._channel is not None
        try:
            while True:
                pcm = await self._queue.get()
                await self._channel.send(pcm)
                self.frames_sent += 1
        except asyncio.CancelledError:
            raise
        except Exception as e:
            await self._fail(ChannelError(f"sending audio failed: {e}"))

    async def _receive_events(self) -> None:
        assert self._channel is not None
        try:
            async for event in self._channel.events():
                await self._handle_event(event)
                if not self.is_active:
                    return
        except asyncio.CancelledError:
            raise
        except Exception as e:
            await self._fail(ChannelError(f"transcription channel error: {e}"))
            return

        if self.is_active:
            await self._fail(ChannelError("transcription channel closed by service"))

    async def _handle_event(self, event: TranscriptEvent) -> None:
        if self.state != CaptureState.STREAMING:
            return

        if not event.is_final:
            self.transcript.apply(event)
            if self._observer:
                self._observer.stt_partial(self.participant.id, len(self.transcript.buffer), event.language_code)
            return

        self._transition(CaptureState.FINALIZING)
        language_code = event.language_code or self.transcript.language_code
        text = self.transcript.apply(event)
        if text:
            if self._observer:
                self._observer.stt_final(self.participant.id, len(text), language_code)
            self._hand_over(text, language_code)

        if self.continuous:
            self._transition(CaptureState.STREAMING)
        else:
            await self._release()
            self._transition(CaptureState.IDLE)

    def _hand_over(self, text: str, language_code: Optional[str]) -> bool:
        self.logger.info_pii("Transcript finalized", text=text)
        try:
            self._on_utterance(self.participant, text, language_code, self.target_languages)
            return True
        except Exception as e:
            self.logger.error(
                "Utterance handler failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            return False

    # --- internals ---

    async def _fail(self, error: BridgeError) -> None:
        if self.state in (CaptureState.IDLE, CaptureState.STOPPING, CaptureState.FAILED):
            return
        self.last_error = error
        self.logger.error(
            "Capture session failed",
            error=str(error),
            error_type=type(error).__name__,
        )
        self._transition(CaptureState.FAILED)
        if self._observer:
            self._observer.capture_failed(self.participant.id, error)
        await self._release()
        self.transcript.reset()
        self._transition(CaptureState.IDLE)

    async def _release(self) -> None:
        current = asyncio.current_task()
        for task in (self._sender, self._receiver):
            if task is not None and task is not current and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._sender = None
        self._receiver = None
        self._queue = None

        if self._channel is not None:
            try:
                await self._channel.close()
            except Exception as e:
                self.logger.warning("Closing transcription channel failed", error=str(e))
            self._channel = None

        if self._device is not None and self._device_acquired:
            self._device_acquired = False
            try:
                await self._device.release(self.participant.id)
            except Exception as e:
                self.logger.warning("Releasing capture device failed", error=str(e))

    def _transition(self, new_state: CaptureState) -> CaptureState:
        old_state = self.state
        if new_state not in _TRANSITIONS[old_state]:
            raise RuntimeError(f"invalid capture transition {old_state.value} -> {new_state.value}")
        self.state = new_state
        self.logger.debug(
            "Capture state changed",
            from_state=old_state.value,
            to_state=new_state.value,
        )
        if self._observer:
            self._observer.capture_state_changed(self.participant.id, old_state.value, new_state.value)
        return old_state
