"""
LiveKit call transport.

Joins the meeting room as the bot identity and provides what the orchestrator
needs from a call:
- ingress: one AudioStream per subscribed remote audio track, resampled to
  16 kHz mono and tagged with the remote participant's identity
- egress: a single published track fed from an AudioSource
- membership: join/leave notifications

Subscribing to a participant's audio is the capture "device": acquire()
subscribes, release() unsubscribes and stops the reader.
"""
from __future__ import annotations

import asyncio
import time
from typing import Any, Callable, Dict, Iterator, List, Optional

from livekit import api, rtc

from logging_setup import get_logger, Component

from .config import BridgeConfig
from .errors import DeviceError
from .orchestrator import ParticipantInfo
from .router import AudioFrame

logger = get_logger(Component.LIVEKIT_TRANSPORT)

EGRESS_TRACK_NAME = "linguist-translation"
INGRESS_SAMPLE_RATE = 16000


def build_bot_token(config: BridgeConfig) -> str:
    """Room-join token for the bot identity."""
    return (
        api.AccessToken(config.livekit_api_key, config.livekit_api_secret)
        .with_identity(config.bot_identity)
        .with_name("Linguist")
        .with_grants(
            api.VideoGrants(
                room_join=True,
                room=config.meeting_room,
                can_publish=True,
                can_subscribe=True,
            )
        )
        .to_jwt()
    )


class LiveKitCallBridge:
    """Implements orchestrator.CallTransport on top of a LiveKit room."""

    def __init__(self, config: BridgeConfig, *, room: Optional[rtc.Room] = None):
        if not config.has_livekit_credentials:
            raise ValueError("LiveKit transport requires LIVEKIT_URL, LIVEKIT_API_KEY and LIVEKIT_API_SECRET")
        self.config = config
        self.room = room or rtc.Room()
        self.logger = logger.with_session(config.meeting_room)

        self._frame_callbacks: List[Callable[[AudioFrame], Any]] = []
        self._join_callbacks: List[Callable[[ParticipantInfo], Any]] = []
        self._leave_callbacks: List[Callable[[str], Any]] = []

        self._source: Optional[rtc.AudioSource] = None
        self._source_rate = config.tts_sample_rate
        self._acquired: set = set()
        self._readers: Dict[str, asyncio.Task] = {}

    # --- CallTransport: registration ---

    def on_frame(self, callback: Callable[[AudioFrame], Any]) -> None:
        self._frame_callbacks.append(callback)

    def on_participant_joined(self, callback: Callable[[ParticipantInfo], Any]) -> None:
        self._join_callbacks.append(callback)

    def on_participant_left(self, callback: Callable[[str], Any]) -> None:
        self._leave_callbacks.append(callback)

    # --- CallTransport: lifecycle ---

    async def connect(self) -> None:
        """Publish the egress track first, then start receiving participants."""
        self.room.on("participant_connected", self._on_participant_connected)
        self.room.on("participant_disconnected", self._on_participant_disconnected)
        self.room.on("track_published", self._on_track_published)
        self.room.on("track_subscribed", self._on_track_subscribed)
        self.room.on("track_unsubscribed", self._on_track_unsubscribed)

        await self.room.connect(
            self.config.livekit_url,
            build_bot_token(self.config),
            options=rtc.RoomOptions(auto_subscribe=False),
        )
        self.logger.info("Connected to LiveKit room", room=self.config.meeting_room)

        self._source = rtc.AudioSource(self._source_rate, 1)
        track = rtc.LocalAudioTrack.create_audio_track(EGRESS_TRACK_NAME, self._source)
        options = rtc.TrackPublishOptions(source=rtc.TrackSource.SOURCE_MICROPHONE)
        await self.room.local_participant.publish_track(track, options)
        self.logger.info(
            "Egress track published",
            sample_rate=self._source_rate,
            bot_identity=self.config.bot_identity,
        )

        for participant in list(self.room.remote_participants.values()):
            self._on_participant_connected(participant)

    async def disconnect(self) -> None:
        for task in list(self._readers.values()):
            task.cancel()
        await asyncio.gather(*self._readers.values(), return_exceptions=True)
        self._readers.clear()
        self._acquired.clear()
        await self.room.disconnect()
        self.logger.info("Disconnected from LiveKit room")

    # --- CallTransport: egress ---

    async def write(self, pcm: bytes, sample_rate: int) -> None:
        """Play PCM on the egress track, resampled to the track rate; returns once it has played out."""
        if self._source is None:
            raise DeviceError("egress track not published")
        for frame in self._egress_frames(pcm, sample_rate):
            await self._source.capture_frame(frame)
        await self._source.wait_for_playout()

    def _egress_frames(self, pcm: bytes, sample_rate: int) -> Iterator[rtc.AudioFrame]:
        resampler = None
        if sample_rate != self._source_rate:
            resampler = rtc.AudioResampler(sample_rate, self._source_rate, num_channels=1)
            self.logger.debug("Resampling egress audio", from_rate=sample_rate, to_rate=self._source_rate)

        chunk_bytes = (sample_rate // 10) * 2  # 100 ms
        for offset in range(0, len(pcm), chunk_bytes):
            chunk = pcm[offset:offset + chunk_bytes]
            frame = rtc.AudioFrame(
                data=chunk,
                sample_rate=sample_rate,
                num_channels=1,
                samples_per_channel=len(chunk) // 2,
            )
            if resampler is None:
                yield frame
            else:
                yield from resampler.push(frame)
        if resampler is not None:
            yield from resampler.flush()

    # --- CallTransport: capture device ---

    async def acquire(self, participant_id: str) -> None:
        participant = self.room.remote_participants.get(participant_id)
        if participant is None:
            raise DeviceError(f"participant {participant_id} is not in the room")
        self._acquired.add(participant_id)
        for publication in participant.track_publications.values():
            if publication.kind == rtc.TrackKind.KIND_AUDIO:
                publication.set_subscribed(True)

    async def release(self, participant_id: str) -> None:
        self._acquired.discard(participant_id)
        reader = self._readers.pop(participant_id, None)
        if reader is not None:
            reader.cancel()
            try:
                await reader
            except asyncio.CancelledError:
                pass
        participant = self.room.remote_participants.get(participant_id)
        if participant is not None:
            for publication in participant.track_publications.values():
                if publication.kind == rtc.TrackKind.KIND_AUDIO:
                    publication.set_subscribed(False)

    # --- room events ---

    def _on_participant_connected(self, participant: rtc.RemoteParticipant) -> None:
        info = ParticipantInfo(
            participant_id=participant.identity,
            name=participant.name,
            metadata=participant.metadata,
            attributes=dict(participant.attributes or {}),
        )
        self.logger.debug("Participant joined", participant_id=participant.identity)
        for callback in self._join_callbacks:
            callback(info)

    def _on_participant_disconnected(self, participant: rtc.RemoteParticipant) -> None:
        self.logger.debug("Participant left", participant_id=participant.identity)
        for callback in self._leave_callbacks:
            callback(participant.identity)

    def _on_track_published(self, publication: rtc.RemoteTrackPublication, participant: rtc.RemoteParticipant) -> None:
        if participant.identity in self._acquired and publication.kind == rtc.TrackKind.KIND_AUDIO:
            publication.set_subscribed(True)

    def _on_track_subscribed(
        self,
        track: rtc.Track,
        publication: rtc.RemoteTrackPublication,
        participant: rtc.RemoteParticipant,
    ) -> None:
        if not isinstance(track, rtc.RemoteAudioTrack):
            return
        identity = participant.identity
        previous = self._readers.pop(identity, None)
        if previous is not None:
            previous.cancel()
        self._readers[identity] = asyncio.create_task(
            self._read_track(identity, track),
            name=f"ingress-{identity}",
        )

    def _on_track_unsubscribed(
        self,
        track: rtc.Track,
        publication: rtc.RemoteTrackPublication,
        participant: rtc.RemoteParticipant,
    ) -> None:
        reader = self._readers.pop(participant.identity, None)
        if reader is not None:
            reader.cancel()

    async def _read_track(self, identity: str, track: rtc.RemoteAudioTrack) -> None:
        stream = rtc.AudioStream.from_track(track=track, sample_rate=INGRESS_SAMPLE_RATE, num_channels=1)
        try:
            async for event in stream:
                frame = AudioFrame(
                    source_id=identity,
                    pcm=bytes(event.frame.data),
                    sample_rate=event.frame.sample_rate,
                    timestamp_monotonic=time.monotonic_ns(),
                )
                for callback in self._frame_callbacks:
                    callback(frame)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.logger.error(
                "Ingress stream failed",
                participant_id=identity,
                error=str(e),
                error_type=type(e).__name__,
            )
        finally:
            await stream.aclose()
