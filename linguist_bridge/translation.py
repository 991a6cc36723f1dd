"""
Translation stage: finalized transcript -> translated text.

One generateContent call per target language, no internal retry. Failures
surface as UpstreamError and fail the Turn.
"""
import time

from logging_setup import get_logger, Component

from .errors import UpstreamError
from .gemini_http import GeminiRestClient, first_candidate_parts
from .instructions import (
    TRANSLATION_SYSTEM_INSTRUCTION,
    TRANSLATION_TEMPERATURE,
    build_translation_prompt,
    clean_translation,
)
from .languages import Language

logger = get_logger(Component.TRANSLATION)


class TranslationStage:
    def __init__(self, client: GeminiRestClient, *, model: str, timeout_seconds: float = 15.0):
        self._client = client
        self.model = model
        self.timeout_seconds = timeout_seconds

    async def translate(self, text: str, source_language: Language, target_language: Language) -> str:
        """
        Translate `text`; raises UpstreamError on timeout, service error or empty output.

        Same-language requests return the text unchanged without a network call.
        """
        if not text.strip():
            raise ValueError("nothing to translate")
        if source_language == target_language:
            return text

        payload = {
            "systemInstruction": {"parts": [{"text": TRANSLATION_SYSTEM_INSTRUCTION}]},
            "contents": [
                {
                    "role": "user",
                    "parts": [{"text": build_translation_prompt(text, source_language, target_language)}],
                }
            ],
            "generationConfig": {"temperature": TRANSLATION_TEMPERATURE},
        }

        t_start = time.perf_counter()
        data = await self._client.generate_content(
            self.model,
            payload,
            stage="translation",
            timeout=self.timeout_seconds,
        )

        texts = [part.get("text") for part in first_candidate_parts(data)]
        raw = "".join(t for t in texts if isinstance(t, str))
        translated = clean_translation(raw)
        if not translated:
            raise UpstreamError("translation returned empty text", stage="translation")

        logger.info(
            "Translation completed",
            source_language=source_language.value,
            target_language=target_language.value,
            text_length=len(text),
            translated_length=len(translated),
            latency_ms=int((time.perf_counter() - t_start) * 1000),
        )
        return translated
