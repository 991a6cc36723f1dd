"""
Streaming speech-to-text over the Gemini Live API (BidiGenerateContent websocket).

The session is configured for input transcription only: the model is told to
transcribe verbatim, and anything it says back is ignored. The service sends
incremental transcription deltas; this adapter turns them into cumulative
partials so the capture session sees "Hel", "Hello", "Hello wor", ...
"""
import asyncio
import base64
import json
from typing import Any, AsyncIterator, Dict, Optional

import aiohttp

from logging_setup import get_logger, Component

from .errors import ChannelError, redact_detail
from .instructions import TRANSCRIPTION_SYSTEM_INSTRUCTION
from .transcript import TranscriptEvent

logger = get_logger(Component.STT)

LIVE_WS_URL = (
    "wss://generativelanguage.googleapis.com/ws/"
    "google.ai.generativelanguage.v1beta.GenerativeService.BidiGenerateContent"
)


def build_setup_message(model: str, language_hint: str) -> Dict[str, Any]:
    return {
        "setup": {
            "model": model if model.startswith("models/") else f"models/{model}",
            "generationConfig": {
                "responseModalities": ["AUDIO"],
                "speechConfig": {"languageCode": language_hint},
            },
            "systemInstruction": {"parts": [{"text": TRANSCRIPTION_SYSTEM_INSTRUCTION}]},
            "inputAudioTranscription": {},
        }
    }


def build_audio_message(pcm: bytes, sample_rate: int = 16000) -> Dict[str, Any]:
    return {
        "realtimeInput": {
            "audio": {
                "data": base64.b64encode(pcm).decode("ascii"),
                "mimeType": f"audio/pcm;rate={sample_rate}",
            }
        }
    }


class GeminiLiveChannel:
    """One websocket transcription session; implements capture.TranscriptionChannel."""

    def __init__(
        self,
        *,
        api_key: str,
        model: str,
        sample_rate: int = 16000,
        url: str = LIVE_WS_URL,
        open_timeout: float = 10.0,
    ):
        self._api_key = api_key
        self._model = model
        self._sample_rate = sample_rate
        self._url = url
        self._open_timeout = open_timeout
        self._http: Optional[aiohttp.ClientSession] = None
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None
        self._language_hint: Optional[str] = None
        self._running = ""

    async def open(self, language_hint: str) -> None:
        self._language_hint = language_hint
        self._http = aiohttp.ClientSession()
        try:
            self._ws = await self._http.ws_connect(
                self._url,
                params={"key": self._api_key},
                heartbeat=30,
            )
            await self._ws.send_str(json.dumps(build_setup_message(self._model, language_hint)))
            await asyncio.wait_for(self._await_setup_complete(), timeout=self._open_timeout)
        except asyncio.TimeoutError as e:
            await self.close()
            raise ChannelError("transcription setup not acknowledged") from e
        except aiohttp.ClientError as e:
            await self.close()
            raise ChannelError(redact_detail(f"transcription connect failed: {e}", (self._api_key,))) from e
        except ChannelError:
            await self.close()
            raise

        logger.info("Transcription channel open", model=self._model, language_hint=language_hint)

    async def _await_setup_complete(self) -> None:
        assert self._ws is not None
        async for msg in self._ws:
            data = self._decode(msg)
            if data is None:
                continue
            if "setupComplete" in data:
                return
        raise ChannelError("transcription channel closed during setup")

    async def send(self, pcm: bytes) -> None:
        if self._ws is None or self._ws.closed:
            raise ChannelError("transcription channel is not open")
        await self._ws.send_str(json.dumps(build_audio_message(pcm, self._sample_rate)))

    async def events(self) -> AsyncIterator[TranscriptEvent]:
        if self._ws is None:
            raise ChannelError("transcription channel is not open")
        async for msg in self._ws:
            data = self._decode(msg)
            if data is None:
                continue
            for event in self.parse_server_message(data):
                yield event

    def parse_server_message(self, data: Dict[str, Any]) -> list:
        """Map one server message onto zero or more cumulative transcript events."""
        content = data.get("serverContent")
        if not isinstance(content, dict):
            return []

        events = []
        transcription = content.get("inputTranscription") or {}
        delta = transcription.get("text") or ""
        if delta:
            self._running += delta
            events.append(TranscriptEvent(text=self._running, is_final=False, language_code=self._language_hint))

        finished = bool(transcription.get("finished")) or bool(content.get("turnComplete"))
        if finished and self._running:
            events.append(TranscriptEvent(text=self._running, is_final=True, language_code=self._language_hint))
            self._running = ""
        return events

    def _decode(self, msg: aiohttp.WSMessage) -> Optional[Dict[str, Any]]:
        if msg.type in (aiohttp.WSMsgType.TEXT, aiohttp.WSMsgType.BINARY):
            try:
                data = json.loads(msg.data)
            except (json.JSONDecodeError, UnicodeDecodeError):
                logger.warning("Undecodable transcription message", size=len(msg.data))
                return None
            if isinstance(data, dict) and "error" in data:
                raise ChannelError(f"transcription service error: {data['error']}")
            return data if isinstance(data, dict) else None
        if msg.type == aiohttp.WSMsgType.ERROR:
            raise ChannelError(f"transcription websocket error: {self._ws.exception() if self._ws else msg.data}")
        return None

    async def close(self) -> None:
        if self._ws is not None and not self._ws.closed:
            await self._ws.close()
        self._ws = None
        if self._http is not None and not self._http.closed:
            await self._http.close()
        self._http = None
