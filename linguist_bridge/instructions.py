"""
Fixed instructions sent to the Gemini models.

The translation register is a system-level setting, not per-request: natural,
colloquial phrasing rather than literal dictionary translation.
"""

from .languages import Language


TRANSLATION_SYSTEM_INSTRUCTION = (
    "You are a professional, natural-sounding translator for live spoken "
    "conversation. Use colloquial, modern phrasing where appropriate rather than "
    "overly formal dictionary translations."
)

TRANSLATION_TEMPERATURE = 0.1

TRANSCRIPTION_SYSTEM_INSTRUCTION = "Transcribe the user's speech exactly as spoken. Do not translate."


def build_translation_prompt(text: str, source: Language, target: Language) -> str:
    """Literal transcript plus a directive to return the translation only."""
    return (
        f"Translate the following text from {source.value} to {target.value}. "
        "Provide only the translated text without any explanations or extra characters."
        f'\n\nText: "{text}"'
    )


def clean_translation(raw: str) -> str:
    """Strip whitespace and a wrapping pair of quotes the model sometimes echoes back."""
    text = raw.strip()
    for quote in ('"', "“”", "'"):
        opening, closing = (quote[0], quote[-1])
        if len(text) >= 2 and text[0] == opening and text[-1] == closing:
            text = text[1:-1].strip()
            break
    return text
