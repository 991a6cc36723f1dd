"""
Languages a participant can declare, and the fixed voice per target language.
"""
from enum import Enum
from typing import Optional


class Language(str, Enum):
    """Declared participant languages (value is the display name)."""
    ENGLISH = "English"
    HINDI = "Hindi"
    SPANISH = "Spanish"
    FRENCH = "French"
    GERMAN = "German"
    DUTCH = "Dutch"

    @property
    def code(self) -> str:
        """BCP-47 code used as the speech-to-text language hint."""
        return _CODES[self]


_CODES = {
    Language.ENGLISH: "en-US",
    Language.HINDI: "hi-IN",
    Language.SPANISH: "es-ES",
    Language.FRENCH: "fr-FR",
    Language.GERMAN: "de-DE",
    Language.DUTCH: "nl-NL",
}

# Prebuilt synthesis voices; not user-configurable.
VOICE_PROFILES = {
    Language.HINDI: "Puck",
    Language.ENGLISH: "Kore",
    Language.SPANISH: "Aoede",
    Language.FRENCH: "Charon",
    Language.GERMAN: "Fenrir",
    Language.DUTCH: "Leda",
}


def parse_language(value: Optional[str]) -> Optional[Language]:
    """
    Resolve a language from a display name, enum name or language code.

    "Hindi", "HINDI", "hi", "hi-IN" all resolve to Language.HINDI.
    Returns None for empty or unknown values.
    """
    if not value or not isinstance(value, str):
        return None
    needle = value.strip().lower()
    if not needle:
        return None
    for language in Language:
        code = _CODES[language].lower()
        if needle in (language.value.lower(), language.name.lower(), code, code.split("-")[0]):
            return language
    return None


def voice_for(language: Language) -> str:
    """Voice profile for a target language."""
    return VOICE_PROFILES[language]
