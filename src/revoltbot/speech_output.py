#!/usr/bin/env python3
"""
RevoltBot speech output

Text is rendered to audio by a synthesizer (pyttsx3 by default) and played
through the interruptible player on a single worker thread. Every request
returns a SpeechJob that settles exactly once.
"""
from __future__ import annotations

import os
import queue
import re
import tempfile
import threading
from enum import Enum
from typing import Any, Callable, List, Optional, Tuple

import numpy as np

from .audio_interrupt import InterruptibleAudioPlayer
from .error_handler import ErrorSeverity, SynthesisError, VoiceUnavailableError, handle_error
from .language import Voice
from .logging_utils import setup_logger

logger = setup_logger("revoltbot.speech_output", "logs/speech_output.log")


class PlaybackOutcome(Enum):
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


class SpeechJob:
    """Handle for one speak request"""

    def __init__(self, text: str, voice: Optional[Voice], language_tag: str) -> None:
        self.text = text
        self.voice = voice
        self.language_tag = language_tag
        self._outcome: Optional[PlaybackOutcome] = None
        self._error: Optional[SynthesisError] = None
        self._callbacks: List[Callable[["SpeechJob"], None]] = []
        self._lock = threading.Lock()
        self._done = threading.Event()

    @property
    def outcome(self) -> Optional[PlaybackOutcome]:
        return self._outcome

    @property
    def error(self) -> Optional[SynthesisError]:
        return self._error

    def done(self) -> bool:
        return self._done.is_set()

    def cancelled(self) -> bool:
        return self._outcome is PlaybackOutcome.CANCELLED

    def wait(self, timeout: Optional[float] = None) -> Optional[PlaybackOutcome]:
        self._done.wait(timeout)
        return self._outcome

    def add_done_callback(self, callback: Callable[["SpeechJob"], None]) -> None:
        """Run `callback(job)` once settled; immediately if already settled"""
        with self._lock:
            if not self._done.is_set():
                self._callbacks.append(callback)
                return
        self._run_callback(callback)

    def cancel(self) -> bool:
        return self._settle(PlaybackOutcome.CANCELLED)

    def _settle(self, outcome: PlaybackOutcome, error: Optional[SynthesisError] = None) -> bool:
        with self._lock:
            if self._done.is_set():
                return False
            self._outcome = outcome
            self._error = error
            self._done.set()
            callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            self._run_callback(callback)
        return True

    def _run_callback(self, callback: Callable[["SpeechJob"], None]) -> None:
        try:
            callback(self)
        except Exception as e:
            logger.error(f"Speech job callback error: {e}")

    def __repr__(self) -> str:
        return f"SpeechJob(language_tag={self.language_tag!r}, outcome={self._outcome})"


class Pyttsx3Synthesizer:
    """Renders text with the platform TTS engine via pyttsx3"""

    # Hyphenated tags first: "TTS_MS_EN-US_ZIRA" must not read as "tts-MS"
    _ID_TAG_RES = (
        re.compile(r"(?<![A-Za-z])([A-Za-z]{2,3})-([A-Za-z]{2})(?![A-Za-z])"),
        re.compile(r"(?<![A-Za-z])([A-Za-z]{2,3})_([A-Za-z]{2})(?![A-Za-z])"),
    )

    def __init__(self, rate: int = 180, volume: float = 1.0) -> None:
        self.rate = rate
        self.volume = volume
        self._engine: Any = None
        # pyttsx3 engines are not thread-safe
        self._lock = threading.Lock()

    def _get_engine(self) -> Any:
        if self._engine is None:
            import pyttsx3

            self._engine = pyttsx3.init()
            self._engine.setProperty('rate', self.rate)
            self._engine.setProperty('volume', self.volume)
        return self._engine

    def synthesize(self, text: str, voice: Voice) -> Tuple[np.ndarray, int]:
        """Render `text` with `voice` into mono float32 samples"""
        import soundfile as sf

        fd, path = tempfile.mkstemp(prefix="revoltbot_tts_", suffix=".wav")
        os.close(fd)
        try:
            with self._lock:
                engine = self._get_engine()
                engine.setProperty('voice', voice.id)
                engine.save_to_file(text, path)
                engine.runAndWait()
            audio, sample_rate = sf.read(path, dtype='float32')
        except (OSError, RuntimeError) as e:
            raise SynthesisError(f"Synthesis failed: {e}", language_tag=voice.lang) from e
        finally:
            try:
                os.remove(path)
            except OSError:
                pass

        if audio.ndim > 1:
            audio = audio.mean(axis=1)
        if audio.size == 0:
            raise SynthesisError("Synthesis produced no audio", language_tag=voice.lang)
        return audio.astype(np.float32), int(sample_rate)

    @classmethod
    def normalize_language(cls, languages: Any, voice_id: str = "") -> str:
        """Best-effort language tag for an engine voice, e.g. 'hi-IN'"""
        for raw in languages or []:
            if isinstance(raw, bytes):
                raw = raw.decode('utf-8', errors='ignore')
            tag = ''.join(ch for ch in str(raw) if ch.isprintable()).strip().replace('_', '-')
            if tag:
                return _canonical_tag(tag)

        for pattern in cls._ID_TAG_RES:
            match = pattern.search(voice_id or "")
            if match:
                return f"{match.group(1).lower()}-{match.group(2).upper()}"
        return ""

    def load_voices(self) -> List[Voice]:
        """Voices the engine reports; the engine's current voice is marked default"""
        with self._lock:
            engine = self._get_engine()
            engine_voices = engine.getProperty('voices') or []
            current = engine.getProperty('voice')

        voices = []
        for v in engine_voices:
            lang = self.normalize_language(getattr(v, 'languages', None), v.id)
            voices.append(Voice(id=v.id, name=getattr(v, 'name', None) or v.id, lang=lang,
                                default=(v.id == current)))
        logger.info(f"Loaded {len(voices)} synthesis voices")
        return voices


def _canonical_tag(tag: str) -> str:
    parts = tag.split('-')
    if len(parts) >= 2 and len(parts[1]) == 2:
        return '-'.join([parts[0].lower(), parts[1].upper()] + parts[2:])
    return tag.lower()


class SpeechOutput:
    """Serial speech output with interruption"""

    def __init__(self, synthesizer: Any = None, player: Any = None) -> None:
        self.synthesizer = synthesizer if synthesizer is not None else Pyttsx3Synthesizer()
        self.player = player if player is not None else InterruptibleAudioPlayer()
        self._jobs: "queue.Queue[Optional[SpeechJob]]" = queue.Queue()
        self._current: Optional[SpeechJob] = None
        self._lock = threading.Lock()
        self._running = True
        self._worker = threading.Thread(target=self._worker_loop, name="speech-output", daemon=True)
        self._worker.start()

    def speak(self, text: str, voice: Optional[Voice], language_tag: str) -> SpeechJob:
        """Queue `text` for playback; any outstanding job is interrupted first"""
        self.interrupt()
        job = SpeechJob(text, voice, language_tag)
        if voice is None:
            logger.warning(f"No voice for {language_tag}; not speaking")
            job._settle(PlaybackOutcome.FAILED, VoiceUnavailableError(language_tag))
            return job
        if not self._running:
            job._settle(PlaybackOutcome.FAILED, SynthesisError("Speech output is shut down",
                                                               language_tag=language_tag))
            return job

        with self._lock:
            self._current = job
        self._jobs.put(job)
        return job

    def interrupt(self) -> None:
        """Stop playback now; the outstanding job settles CANCELLED. Safe when idle."""
        with self._lock:
            job, self._current = self._current, None
        if job is not None and job.cancel():
            logger.info("Speech output interrupted")
        self.player.interrupt_playback()

    def is_speaking(self) -> bool:
        with self._lock:
            return self._current is not None and not self._current.done()

    def shutdown(self, timeout: float = 2.0) -> None:
        if not self._running:
            return
        self.interrupt()
        self._running = False
        self._jobs.put(None)
        self._worker.join(timeout=timeout)

    def _worker_loop(self) -> None:
        while True:
            job = self._jobs.get()
            if job is None:
                break
            if job.done():
                continue
            try:
                self._run_job(job)
            except SynthesisError as e:
                handle_error(e, "speech_output", "speak", ErrorSeverity.LOW)
                job._settle(PlaybackOutcome.FAILED, e)
            except Exception as e:
                handle_error(e, "speech_output", "speak", ErrorSeverity.MEDIUM)
                job._settle(PlaybackOutcome.FAILED, SynthesisError(str(e), language_tag=job.language_tag))
            finally:
                with self._lock:
                    if self._current is job:
                        self._current = None

    def _run_job(self, job: SpeechJob) -> None:
        audio, sample_rate = self.synthesizer.synthesize(job.text, job.voice)
        if job.done():
            return
        finished = self.player.play(audio, sample_rate)
        if finished and not job.done():
            job._settle(PlaybackOutcome.COMPLETED)
        else:
            job._settle(PlaybackOutcome.CANCELLED)


__all__ = [
    "PlaybackOutcome",
    "SpeechJob",
    "SpeechOutput",
    "Pyttsx3Synthesizer",
]
