"""
Synthesis stage: translated text -> decoded PCM -> egress playback.

Gemini TTS returns base64 LINEAR16 mono PCM (24 kHz by default). The payload
is fully decoded before anything is played, so a decode failure emits no
partial audio. Playback is exclusive per sink: a new buffer waits for the
previous playback's completion.
"""
import asyncio
import base64
import binascii
import re
import struct
import time
from dataclasses import dataclass
from typing import Optional, Protocol

from logging_setup import get_logger, Component

from .errors import DeviceError, UpstreamError
from .gemini_http import GeminiRestClient, first_candidate_parts
from .languages import Language, voice_for

logger = get_logger(Component.TTS)
playback_logger = get_logger(Component.PLAYBACK)


@dataclass(frozen=True)
class PlaybackBuffer:
    """Decoded 16-bit mono PCM ready for one sink. Consumed once."""

    pcm: bytes
    sample_rate: int
    voice: str
    target_language: Language

    @property
    def duration_ms(self) -> int:
        return int(len(self.pcm) / 2 / self.sample_rate * 1000)


class AudioSink(Protocol):
    """Egress device (e.g. the bot's published call track)."""

    async def write(self, pcm: bytes, sample_rate: int) -> None: ...


def decode_audio_payload(audio_b64: str) -> bytes:
    """Decode base64 LINEAR16 audio; raises UpstreamError if it is not whole 16-bit samples."""
    try:
        pcm = base64.b64decode(audio_b64, validate=True)
    except (binascii.Error, ValueError, TypeError) as e:
        raise UpstreamError(f"synthesis audio decode failed: {e}", stage="synthesis") from e
    if not pcm:
        raise UpstreamError("synthesis returned empty audio", stage="synthesis")
    if len(pcm) % 2 != 0:
        raise UpstreamError("synthesis audio decode failed: odd byte count", stage="synthesis")
    return pcm


def smooth_edges(pcm: bytes, sample_rate: int) -> bytes:
    """
    Remove DC offset and fade the edges to prevent clicks/pops.

    Fade-in is 100 ms on an x^2 curve, fade-out 50 ms linear.
    """
    num_samples = len(pcm) // 2
    if num_samples == 0:
        return pcm

    samples = list(struct.unpack(f"<{num_samples}h", pcm))

    # DC offset from the first 100 samples; only removed when significant
    dc_window = min(100, num_samples)
    dc_offset = sum(samples[:dc_window]) // dc_window
    if abs(dc_offset) > 5:
        samples = [max(-32768, min(32767, s - dc_offset)) for s in samples]

    fade_in = min(sample_rate // 10, num_samples)
    for i in range(fade_in):
        samples[i] = int(samples[i] * (i / fade_in) ** 2)

    fade_out = min(sample_rate // 20, num_samples)
    if num_samples > fade_out:
        for i in range(fade_out):
            idx = num_samples - 1 - i
            samples[idx] = int(samples[idx] * (i / fade_out))

    return struct.pack(f"<{num_samples}h", *samples)


_RATE_RE = re.compile(r"rate=(\d+)")


class SynthesisStage:
    def __init__(
        self,
        client: GeminiRestClient,
        *,
        model: str,
        sample_rate: int = 24000,
        timeout_seconds: float = 30.0,
    ):
        self._client = client
        self.model = model
        self.sample_rate = sample_rate
        self.timeout_seconds = timeout_seconds

    async def synthesize(
        self,
        text: str,
        target_language: Language,
        voice_profile: Optional[str] = None,
    ) -> PlaybackBuffer:
        """Synthesize `text` with the target language's fixed voice. Raises UpstreamError."""
        voice = voice_profile or voice_for(target_language)
        payload = {
            "contents": [{"parts": [{"text": text}]}],
            "generationConfig": {
                "responseModalities": ["AUDIO"],
                "speechConfig": {
                    "voiceConfig": {"prebuiltVoiceConfig": {"voiceName": voice}},
                },
            },
        }

        logger.info(
            "TTS call started",
            target_language=target_language.value,
            voice=voice,
            text_length=len(text),
        )
        t_start = time.perf_counter()
        data = await self._client.generate_content(
            self.model,
            payload,
            stage="synthesis",
            timeout=self.timeout_seconds,
        )

        inline = None
        for part in first_candidate_parts(data):
            candidate = part.get("inlineData") or part.get("inline_data")
            if isinstance(candidate, dict) and candidate.get("data"):
                inline = candidate
                break
        if inline is None:
            logger.error("Gemini TTS: no audio data in response")
            raise UpstreamError("No audio data", stage="synthesis")

        sample_rate = self.sample_rate
        mime_type = inline.get("mimeType") or inline.get("mime_type")
        match = _RATE_RE.search(mime_type) if isinstance(mime_type, str) else None
        if match and int(match.group(1)) > 0:
            sample_rate = int(match.group(1))

        pcm = smooth_edges(decode_audio_payload(inline["data"]), sample_rate)
        buffer = PlaybackBuffer(pcm=pcm, sample_rate=sample_rate, voice=voice, target_language=target_language)

        logger.info(
            "TTS call completed",
            target_language=target_language.value,
            voice=voice,
            audio_bytes=len(pcm),
            audio_duration_ms=buffer.duration_ms,
            latency_ms=int((time.perf_counter() - t_start) * 1000),
        )
        return buffer


class EgressPlayer:
    """
    Exclusive playback on one sink.

    play() holds the sink until the write completes; a concurrent play() is
    not started before that.
    """

    def __init__(self, sink: AudioSink):
        self.sink = sink
        self.is_playing = False
        self.buffers_played = 0
        self._lock = asyncio.Lock()

    async def play(self, buffer: PlaybackBuffer) -> None:
        """Write the whole buffer to the sink. Raises DeviceError if the sink fails."""
        async with self._lock:
            self.is_playing = True
            t_start = time.perf_counter()
            try:
                await self.sink.write(buffer.pcm, buffer.sample_rate)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                raise DeviceError(f"egress sink write failed: {e}") from e
            finally:
                self.is_playing = False

            self.buffers_played += 1
            playback_logger.info(
                "Playback completed",
                target_language=buffer.target_language.value,
                audio_duration_ms=buffer.duration_ms,
                latency_ms=int((time.perf_counter() - t_start) * 1000),
            )

    async def wait_idle(self) -> None:
        """Wait for the current playback (if any) to finish."""
        async with self._lock:
            return None
