#!/usr/bin/env python3
"""
RevoltBot language negotiation

Maps a requested language tag to a synthesis voice with an ordered fallback,
filters the reference language list down to what the installed voices can
speak, and keeps an observable snapshot of the voice catalog.
"""
from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional, Sequence, Tuple

from .error_handler import VoiceNotFoundError
from .logging_utils import setup_logger

logger = setup_logger("revoltbot.language", "logs/revoltbot.log")

BASELINE_LANGUAGE = "en-IN"


@dataclass(frozen=True)
class Voice:
    """A synthesis voice as reported by the platform engine"""
    id: str
    name: str
    lang: str
    default: bool = False


@dataclass(frozen=True)
class Language:
    code: str
    name: str


REFERENCE_LANGUAGES: Tuple[Language, ...] = (
    Language("hi-IN", "Hindi"),
    Language("en-IN", "English"),
    Language("mr-IN", "Marathi"),
    Language("ta-IN", "Tamil"),
    Language("te-IN", "Telugu"),
    Language("kn-IN", "Kannada"),
    Language("bn-IN", "Bengali"),
    Language("gu-IN", "Gujarati"),
    Language("pa-IN", "Punjabi"),
    Language("ml-IN", "Malayalam"),
)


def primary_subtag(language_tag: str) -> str:
    return language_tag.replace("_", "-").split("-")[0].lower()


def select_voice(language_tag: str, voices: Sequence[Voice]) -> Voice:
    """Pick the best voice for `language_tag`.

    First match wins: exact tag, primary-subtag prefix, primary subtag
    anywhere in the tag, the catalog default, the first voice.

    Raises:
        VoiceNotFoundError: the catalog is empty.
    """
    if not voices:
        raise VoiceNotFoundError(language_tag)

    wanted = language_tag.lower()
    prefix = primary_subtag(language_tag)

    for voice in voices:
        if voice.lang.lower() == wanted:
            return voice

    for voice in voices:
        if voice.lang.lower().startswith(prefix):
            return voice

    for voice in voices:
        if prefix in voice.lang.lower():
            return voice

    for voice in voices:
        if voice.default:
            logger.info(f"No voice for {language_tag}; using default voice {voice.name} ({voice.lang})")
            return voice

    logger.info(f"No voice for {language_tag}; using first voice {voices[0].name} ({voices[0].lang})")
    return voices[0]


def supported_languages(voices: Sequence[Voice],
                        reference: Sequence[Language] = REFERENCE_LANGUAGES) -> List[Language]:
    """Reference languages with at least one voice containing their primary subtag"""
    tags = [v.lang.lower() for v in voices]
    return [lang for lang in reference if any(primary_subtag(lang.code) in tag for tag in tags)]


def resolve_language(current: str, supported: Sequence[Language],
                     baseline: str = BASELINE_LANGUAGE) -> str:
    """Keep `current` if still supported, else the first supported entry, else the baseline.

    Tags match case-insensitively; the reference spelling is returned.
    """
    for lang in supported:
        if lang.code.lower() == current.lower():
            return lang.code
    if supported:
        return supported[0].code
    return baseline


class LanguagePreference:
    """The single active language tag"""

    def __init__(self, code: str = BASELINE_LANGUAGE) -> None:
        self._code = code

    @property
    def code(self) -> str:
        return self._code

    def set(self, code: str) -> bool:
        """Returns True when the preference changed"""
        if code == self._code:
            return False
        logger.info(f"Language preference: {self._code} -> {code}")
        self._code = code
        return True


class VoiceCatalog:
    """Observable snapshot of the voices the synthesis engine currently reports"""

    def __init__(self, loader: Optional[Callable[[], Iterable[Voice]]] = None,
                 voices: Iterable[Voice] = ()) -> None:
        self._loader = loader
        self._voices: Tuple[Voice, ...] = tuple(voices)
        self._subscribers: List[Callable[[Tuple[Voice, ...]], None]] = []
        self._lock = threading.Lock()

    def snapshot(self) -> Tuple[Voice, ...]:
        with self._lock:
            return self._voices

    def subscribe(self, callback: Callable[[Tuple[Voice, ...]], None]) -> Callable[[], None]:
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def update(self, voices: Iterable[Voice]) -> bool:
        """Replace the snapshot; subscribers are notified only on change"""
        new = tuple(voices)
        with self._lock:
            if new == self._voices:
                return False
            self._voices = new
            subscribers = list(self._subscribers)

        logger.info(f"Voice catalog changed: {len(new)} voices")
        for callback in subscribers:
            try:
                callback(new)
            except Exception as e:
                logger.error(f"Voice catalog subscriber error: {e}")
        return True

    def refresh(self) -> bool:
        if self._loader is None:
            return False
        return self.update(self._loader())


__all__ = [
    "BASELINE_LANGUAGE",
    "REFERENCE_LANGUAGES",
    "Voice",
    "Language",
    "LanguagePreference",
    "VoiceCatalog",
    "primary_subtag",
    "select_voice",
    "supported_languages",
    "resolve_language",
]
