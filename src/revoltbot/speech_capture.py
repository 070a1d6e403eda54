#!/usr/bin/env python3
"""
RevoltBot speech capture

A capture engine runs one listening session at a time and yields
CaptureEvents for it. CaptureSupervisor turns that into continuous
listening: sessions that end on their own are reopened after a short delay
for as long as the supervisor stays active.
"""
from __future__ import annotations

import sys
import threading
from dataclasses import dataclass
from typing import Callable, Iterator, Optional, TextIO

from .error_handler import CaptureError, ErrorSeverity, handle_error
from .logging_utils import setup_logger

logger = setup_logger("revoltbot.speech_capture", "logs/speech_capture.log")

AUDIO_CAPTURE = "audio-capture"
NOT_ALLOWED = "not-allowed"
NO_SPEECH = "no-speech"
NETWORK = "network"
ABORTED = "aborted"


@dataclass(frozen=True)
class CaptureEvent:
    partial_text: str
    is_final: bool


class SpeechRecognitionEngine:
    """Microphone capture recognized through the SpeechRecognition library"""

    def __init__(self, timeout: Optional[float] = 5.0, phrase_time_limit: Optional[float] = 10.0,
                 adjust_noise_seconds: float = 0.2, device_index: Optional[int] = None) -> None:
        import speech_recognition as sr

        self._sr = sr
        self._recognizer = sr.Recognizer()
        self._device_index = device_index
        self.timeout = timeout
        self.phrase_time_limit = phrase_time_limit
        self.adjust_noise_seconds = max(0.0, adjust_noise_seconds)
        self._session_stopped = threading.Event()
        # One open microphone at a time; a stopped session can still be inside listen()
        self._mic_lock = threading.Lock()

    def listen(self, language_tag: str) -> Iterator[CaptureEvent]:
        """One session: listen for a phrase and yield its final transcript"""
        stopped = self._session_stopped = threading.Event()
        try:
            with self._mic_lock:
                if stopped.is_set():
                    return
                with self._sr.Microphone(device_index=self._device_index) as source:
                    if self.adjust_noise_seconds > 0:
                        self._recognizer.adjust_for_ambient_noise(source, duration=self.adjust_noise_seconds)
                    audio = self._recognizer.listen(source, timeout=self.timeout,
                                                    phrase_time_limit=self.phrase_time_limit)
        except self._sr.WaitTimeoutError:
            # Silence; the session ends and the supervisor reopens it
            return
        except PermissionError as e:
            raise CaptureError(NOT_ALLOWED, f"Microphone access denied: {e}") from e
        except (OSError, AttributeError) as e:
            raise CaptureError(AUDIO_CAPTURE, f"Microphone unavailable: {e}") from e

        if stopped.is_set():
            return

        try:
            text = self._recognizer.recognize_google(audio, language=language_tag)
        except self._sr.UnknownValueError as e:
            raise CaptureError(NO_SPEECH, "No speech was recognized") from e
        except self._sr.RequestError as e:
            raise CaptureError(NETWORK, f"Speech recognition service request failed: {e}") from e

        if text and not stopped.is_set():
            yield CaptureEvent(partial_text=text, is_final=True)

    def stop(self) -> None:
        """Stop the current session; later sessions are unaffected"""
        self._session_stopped.set()


class TypedInputEngine:
    """Reads typed lines as final transcripts"""

    def __init__(self, stream: Optional[TextIO] = None, prompt: str = "") -> None:
        self.stream = stream if stream is not None else sys.stdin
        self.prompt = prompt
        self._session_stopped = threading.Event()
        self._read_lock = threading.Lock()

    def listen(self, language_tag: str) -> Iterator[CaptureEvent]:
        stopped = self._session_stopped = threading.Event()
        with self._read_lock:
            if stopped.is_set():
                return
            if self.prompt:
                print(self.prompt, end="", flush=True)
            line = self.stream.readline()
        if line == "":
            raise CaptureError(ABORTED, "Input closed")
        text = line.strip()
        if text and not stopped.is_set():
            yield CaptureEvent(partial_text=text, is_final=True)

    def stop(self) -> None:
        self._session_stopped.set()


class CaptureSupervisor:
    """Keeps capture sessions running while active"""

    def __init__(self, engine, restart_delay: float = 0.25) -> None:
        self.engine = engine
        self.restart_delay = max(0.0, restart_delay)
        self.restart_count = 0
        self.language_tag: Optional[str] = None
        self._generation = 0
        self._active = False
        self._wake = threading.Event()
        self._lock = threading.Lock()
        self._pump: Optional[threading.Thread] = None

    @property
    def active(self) -> bool:
        return self._active

    def _is_current(self, generation: int) -> bool:
        with self._lock:
            return self._active and self._generation == generation

    def start_capture(self, language_tag: str) -> Iterator[CaptureEvent]:
        """Activate and return a lazy event sequence for `language_tag`.

        Any iterator handed out earlier goes stale and yields nothing more.
        """
        with self._lock:
            self._generation += 1
            generation = self._generation
            self._active = True
            self._wake = threading.Event()
            wake = self._wake
            self.language_tag = language_tag
        logger.info(f"Capture started ({language_tag})")
        return self._sessions(generation, language_tag, wake)

    def _sessions(self, generation: int, language_tag: str,
                  wake: threading.Event) -> Iterator[CaptureEvent]:
        first = True
        while self._is_current(generation):
            if not first:
                wake.wait(self.restart_delay)
                if not self._is_current(generation):
                    return
                self.restart_count += 1
                logger.debug(f"Restarting capture session ({language_tag})")
            first = False

            try:
                for event in self.engine.listen(language_tag):
                    if not self._is_current(generation):
                        return
                    yield event
            except CaptureError:
                if not self._is_current(generation):
                    return
                self._deactivate(generation)
                raise

    def _deactivate(self, generation: int) -> None:
        with self._lock:
            if self._generation == generation:
                self._active = False

    def start(self, language_tag: str, on_event: Callable[[CaptureEvent], None],
              on_error: Callable[[CaptureError], None]) -> None:
        """Pump `start_capture(language_tag)` on a background thread"""
        events = self.start_capture(language_tag)

        def pump() -> None:
            try:
                for event in events:
                    on_event(event)
            except CaptureError as e:
                logger.warning(f"Capture error: {e.reason}")
                on_error(e)
            except Exception as e:
                handle_error(e, "speech_capture", "pump", ErrorSeverity.HIGH)
                with self._lock:
                    self._active = False
                on_error(CaptureError(AUDIO_CAPTURE, str(e)))

        self._pump = threading.Thread(target=pump, name="speech-capture", daemon=True)
        self._pump.start()

    def stop(self) -> None:
        """Deactivate; no session is reopened after this returns"""
        with self._lock:
            was_active = self._active
            self._active = False
            self._generation += 1
            wake = self._wake
        wake.set()
        self.engine.stop()
        if was_active:
            logger.info("Capture stopped")


__all__ = [
    "CaptureEvent",
    "CaptureSupervisor",
    "SpeechRecognitionEngine",
    "TypedInputEngine",
    "AUDIO_CAPTURE",
    "NOT_ALLOWED",
    "NO_SPEECH",
    "NETWORK",
    "ABORTED",
]
