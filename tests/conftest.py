"""
Shared fixtures: in-memory stand-ins for the speech service, the Gemini REST
client and the call transport. No test touches the network.
"""
import asyncio
import base64
import struct
from typing import Callable, List, Optional

import pytest

from linguist_bridge.config import BridgeConfig
from linguist_bridge.errors import UpstreamError
from linguist_bridge.orchestrator import ParticipantInfo
from linguist_bridge.router import AudioFrame
from linguist_bridge.transcript import TranscriptEvent


def pcm_tone(samples: int = 480, amplitude: int = 1000) -> bytes:
    return struct.pack(f"<{samples}h", *([amplitude] * samples))


class FakeChannel:
    """Scripted transcription channel."""

    def __init__(self, open_error: Optional[Exception] = None, open_gate: Optional[asyncio.Event] = None):
        self.open_error = open_error
        self.open_gate = open_gate
        self.language_hint: Optional[str] = None
        self.sent: List[bytes] = []
        self.closed = False
        self._events: asyncio.Queue = asyncio.Queue()

    async def open(self, language_hint: str) -> None:
        if self.open_gate is not None:
            await self.open_gate.wait()
        if self.open_error is not None:
            raise self.open_error
        self.language_hint = language_hint

    async def send(self, pcm: bytes) -> None:
        self.sent.append(pcm)

    async def events(self):
        while True:
            item = await self._events.get()
            if item is None:
                return
            if isinstance(item, Exception):
                raise item
            yield item

    async def close(self) -> None:
        self.closed = True

    # scripting helpers
    def partial(self, text: str) -> None:
        self._events.put_nowait(TranscriptEvent(text=text, is_final=False, language_code=self.language_hint))

    def final(self, text: str) -> None:
        self._events.put_nowait(TranscriptEvent(text=text, is_final=True, language_code=self.language_hint))

    def drop(self, error: Optional[Exception] = None) -> None:
        self._events.put_nowait(error)


class ChannelFactory:
    """channel_factory that records every channel it creates."""

    def __init__(self, **channel_kwargs):
        self.channel_kwargs = channel_kwargs
        self.channels: List[FakeChannel] = []

    def __call__(self) -> FakeChannel:
        channel = FakeChannel(**self.channel_kwargs)
        self.channels.append(channel)
        return channel

    @property
    def last(self) -> FakeChannel:
        return self.channels[-1]


def translation_response(text: str) -> dict:
    return {"candidates": [{"content": {"parts": [{"text": text}]}}]}


def tts_response(pcm: bytes, rate: int = 24000) -> dict:
    return {
        "candidates": [{
            "content": {
                "parts": [{
                    "inlineData": {
                        "mimeType": f"audio/L16;codec=pcm;rate={rate}",
                        "data": base64.b64encode(pcm).decode("ascii"),
                    }
                }]
            }
        }]
    }


class FakeGeminiClient:
    """Answers generateContent per stage: a dict, an exception, or a callable(payload)."""

    def __init__(self, translation=None, synthesis=None):
        self.responses = {
            "translation": translation if translation is not None else translation_response("नमस्ते"),
            "synthesis": synthesis if synthesis is not None else tts_response(pcm_tone(2400)),
        }
        self.calls: List[dict] = []
        self.gate: Optional[asyncio.Event] = None

    async def generate_content(self, model, payload, *, stage, timeout):
        self.calls.append({"model": model, "payload": payload, "stage": stage, "timeout": timeout})
        if self.gate is not None:
            await self.gate.wait()
        response = self.responses[stage]
        if isinstance(response, Exception):
            raise response
        if callable(response):
            return response(payload)
        return response

    def stages(self) -> List[str]:
        return [c["stage"] for c in self.calls]


class FakeSink:
    def __init__(self, error: Optional[Exception] = None, gate: Optional[asyncio.Event] = None):
        self.error = error
        self.gate = gate
        self.writes: List[bytes] = []
        self.sample_rates: List[int] = []
        self.active = 0
        self.max_active = 0

    async def write(self, pcm: bytes, sample_rate: int) -> None:
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.gate is not None:
                await self.gate.wait()
            else:
                await asyncio.sleep(0)
            if self.error is not None:
                raise self.error
            self.writes.append(pcm)
            self.sample_rates.append(sample_rate)
        finally:
            self.active -= 1


class FakeTransport(FakeSink):
    """In-memory CallTransport."""

    def __init__(self, **sink_kwargs):
        super().__init__(**sink_kwargs)
        self.frame_callbacks: List[Callable] = []
        self.join_callbacks: List[Callable] = []
        self.leave_callbacks: List[Callable] = []
        self.connected = False
        self.disconnected = False
        self.acquired: List[str] = []
        self.released: List[str] = []
        self.acquire_error: Optional[Exception] = None

    def on_frame(self, callback):
        self.frame_callbacks.append(callback)

    def on_participant_joined(self, callback):
        self.join_callbacks.append(callback)

    def on_participant_left(self, callback):
        self.leave_callbacks.append(callback)

    async def connect(self):
        self.connected = True

    async def disconnect(self):
        self.disconnected = True

    async def acquire(self, participant_id):
        if self.acquire_error is not None:
            raise self.acquire_error
        self.acquired.append(participant_id)

    async def release(self, participant_id):
        self.released.append(participant_id)

    # driving helpers
    def join(self, participant_id, name=None, metadata=None, attributes=None):
        info = ParticipantInfo(participant_id, name, metadata, attributes or {})
        return [cb(info) for cb in self.join_callbacks]

    def leave(self, participant_id):
        for cb in self.leave_callbacks:
            cb(participant_id)

    def frame(self, participant_id, pcm=None, sample_rate=16000):
        frame = AudioFrame(
            source_id=participant_id,
            pcm=pcm if pcm is not None else pcm_tone(),
            sample_rate=sample_rate,
            timestamp_monotonic=0,
        )
        return [cb(frame) for cb in self.frame_callbacks]


async def wait_until(predicate, timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.001)


@pytest.fixture
def bridge_config():
    return BridgeConfig(
        gemini_api_key="test-key",
        meeting_room="room-test",
        auto_listen=False,
        heartbeat_seconds=0,
    )


@pytest.fixture
def channel_factory():
    return ChannelFactory()


@pytest.fixture
def gemini():
    return FakeGeminiClient()


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def upstream_timeout():
    return UpstreamError("translation request timed out after 15.0s", stage="translation")
