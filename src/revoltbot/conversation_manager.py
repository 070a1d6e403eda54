#!/usr/bin/env python3
"""
RevoltBot Conversation Manager
Turn-taking and interruption state machine for the voice client.

Every input (user commands, capture results, relay envelopes, playback
outcomes, voice catalog changes) is posted as an event and handled serially,
either on the dispatch thread started with start() or synchronously through
drain().
"""
import itertools
import queue
import threading
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Optional, Tuple

from . import protocol
from .error_handler import (CaptureError, ChannelError, ErrorSeverity, ValidationError, VoiceNotFoundError,
                            handle_error)
from .language import (BASELINE_LANGUAGE, Language, LanguagePreference, Voice, VoiceCatalog,
                       resolve_language, select_voice, supported_languages)
from .logging_utils import setup_logger
from .speech_capture import CaptureEvent
from .speech_output import PlaybackOutcome, SpeechJob
from .transcript import Message, Sender, TranscriptLog
from .validation import validate_text_input

logger = setup_logger("revoltbot.conversation_manager", "logs/conversation.log")

STATUS_START = "Click microphone to start"
STATUS_READY = "Ready to chat"
STATUS_CONNECTION_LOST = "Connection lost. Reconnecting..."
STATUS_CONNECTION_ERROR = "Connection error. Reconnecting..."
STATUS_LISTENING = "Listening..."
STATUS_PROCESSING = "Processing your request..."
STATUS_RESPONDING = "Assistant is responding..."
STATUS_NEXT_QUESTION = "Ready for your next question"
STATUS_VOICE_ERROR = "Error generating voice response"


class ConversationState(Enum):
    """Conversation states"""
    IDLE = "idle"
    LISTENING = "listening"
    AWAITING_RESPONSE = "awaiting_response"
    SPEAKING = "speaking"


# ---- Events ----
@dataclass(frozen=True)
class ToggleCapture:
    pass


@dataclass(frozen=True)
class StopCapture:
    pass


@dataclass(frozen=True)
class InterruptRequested:
    pass


@dataclass(frozen=True)
class ReplayRequested:
    pass


@dataclass(frozen=True)
class LanguageSelected:
    language_tag: str


@dataclass(frozen=True)
class TranscriptReceived:
    event: CaptureEvent


@dataclass(frozen=True)
class CaptureFailed:
    error: CaptureError


@dataclass(frozen=True)
class ReplyReceived:
    text: str


@dataclass(frozen=True)
class ServerErrorReceived:
    message: str


@dataclass(frozen=True)
class ChannelReady:
    pass


@dataclass(frozen=True)
class ChannelLost:
    error: ChannelError


@dataclass(frozen=True)
class PlaybackSettled:
    playback_id: int
    outcome: Optional[PlaybackOutcome]
    error: Optional[Exception] = None


@dataclass(frozen=True)
class CatalogChanged:
    voices: Tuple[Voice, ...]


class ConversationController:
    """Owns the conversation state; mutated only by its event handlers"""

    def __init__(self, capture, output, channel, catalog: VoiceCatalog,
                 preference: Optional[LanguagePreference] = None,
                 baseline_language: str = BASELINE_LANGUAGE,
                 on_status: Optional[Callable[[str], None]] = None,
                 on_state_change: Optional[Callable[[ConversationState], None]] = None,
                 on_message: Optional[Callable[[Message], None]] = None):
        """
        Args:
            capture: CaptureSupervisor (start/stop/active)
            output: SpeechOutput (speak/interrupt)
            channel: anything with send(envelope) -> bool and is_connected()
            catalog: voice catalog used for negotiation
            preference: active language; defaults to the baseline
            baseline_language: language retried when playback fails
        """
        self.capture = capture
        self.output = output
        self.channel = channel
        self.catalog = catalog
        self.preference = preference or LanguagePreference(baseline_language)
        self.baseline_language = baseline_language
        self.on_status = on_status
        self.on_state_change = on_state_change
        self.on_message = on_message

        self.transcript = TranscriptLog()
        self.state = ConversationState.IDLE
        self.status = STATUS_START
        self._supported: List[Language] = supported_languages(catalog.snapshot())
        resolved = resolve_language(self.preference.code, self._supported, baseline_language)
        if resolved.lower() != self.preference.code.lower():
            logger.warning(f"No installed voice speaks {self.preference.code}; starting in {resolved}")
        self.preference.set(resolved)

        self._events: "queue.Queue[Any]" = queue.Queue()
        self._thread: Optional[threading.Thread] = None
        self._running = False

        # In-flight turns in send order; the server answers each connection in order
        self._turn_ids = itertools.count(1)
        self._pending_turns: Deque[int] = deque()
        self._latest_turn: Optional[int] = None
        self._chat_ready = False

        self._playback_id = 0
        self._playback_active = False
        self._playback_text = ""
        self._playback_tag = ""
        self._playback_retried = False

        self._handlers: Dict[type, Callable[[Any], None]] = {
            ToggleCapture: self._on_toggle_capture,
            StopCapture: self._on_stop_capture,
            InterruptRequested: self._on_interrupt,
            ReplayRequested: self._on_replay,
            LanguageSelected: self._on_language_selected,
            TranscriptReceived: self._on_transcript,
            CaptureFailed: self._on_capture_failed,
            ReplyReceived: self._on_reply,
            ServerErrorReceived: self._on_server_error,
            ChannelReady: self._on_channel_ready,
            ChannelLost: self._on_channel_lost,
            PlaybackSettled: self._on_playback_settled,
            CatalogChanged: self._on_catalog_changed,
        }

        self._unsubscribe_catalog = catalog.subscribe(lambda voices: self.post(CatalogChanged(tuple(voices))))
        logger.info("Conversation controller initialized")

    # ---- Public API ----
    @property
    def supported(self) -> List[Language]:
        return list(self._supported)

    @property
    def pending_turns(self) -> int:
        return len(self._pending_turns)

    def post(self, event: Any) -> None:
        self._events.put(event)

    def toggle_capture(self) -> None:
        self.post(ToggleCapture())

    def stop_capture(self) -> None:
        self.post(StopCapture())

    def interrupt(self) -> None:
        self.post(InterruptRequested())

    def replay_last_assistant_message(self) -> None:
        self.post(ReplayRequested())

    def select_language(self, language_tag: str) -> None:
        self.post(LanguageSelected(language_tag))

    def attach_channel(self, client) -> None:
        """Route a RelayClient's envelopes and disconnects into this controller"""
        client.register_handler(protocol.AssistantMessage.type, lambda env: self.post(ReplyReceived(env.text)))
        client.register_handler(protocol.ErrorMessage.type, lambda env: self.post(ServerErrorReceived(env.message)))
        client.register_handler(protocol.ChatStarted.type, lambda env: self.post(ChannelReady()))
        client.set_disconnect_callback(lambda error: self.post(ChannelLost(error)))

    def drain(self) -> int:
        """Handle every queued event on the calling thread; returns how many ran.

        Not for use while the dispatch thread is running.
        """
        handled = 0
        while True:
            try:
                event = self._events.get_nowait()
            except queue.Empty:
                return handled
            if event is not None:
                self._dispatch(event)
                handled += 1

    def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._thread = threading.Thread(target=self._dispatch_loop, name="conversation", daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 2.0) -> None:
        if not self._running:
            return
        self._running = False
        self._events.put(None)
        if self._thread:
            self._thread.join(timeout=timeout)
            self._thread = None
        self._unsubscribe_catalog()

    # ---- Dispatch ----
    def _dispatch_loop(self) -> None:
        while self._running:
            event = self._events.get()
            if event is None:
                break
            self._dispatch(event)

    def _dispatch(self, event: Any) -> None:
        handler = self._handlers.get(type(event))
        if handler is None:
            logger.warning(f"No handler for event {event!r}")
            return
        try:
            handler(event)
        except Exception as e:
            handle_error(e, "conversation_manager", type(event).__name__, ErrorSeverity.HIGH)

    # ---- State helpers ----
    def _set_state(self, new_state: ConversationState) -> None:
        if new_state is self.state:
            return
        old_state, self.state = self.state, new_state
        logger.info(f"State changed: {old_state.value} -> {new_state.value}")
        if self.on_state_change:
            try:
                self.on_state_change(new_state)
            except Exception as e:
                logger.error(f"State change callback error: {e}")

    def _set_status(self, status: str) -> None:
        self.status = status
        if self.on_status:
            try:
                self.on_status(status)
            except Exception as e:
                logger.error(f"Status callback error: {e}")

    def _record(self, text: str, sender: Sender) -> Message:
        message = self.transcript.append(text, sender)
        if self.on_message:
            try:
                self.on_message(message)
            except Exception as e:
                logger.error(f"Message callback error: {e}")
        return message

    def _resting_state(self) -> ConversationState:
        return ConversationState.LISTENING if self.capture.active else ConversationState.IDLE

    def _channel_ready(self) -> bool:
        return self._chat_ready and self.channel.is_connected()

    def _start_listening(self) -> None:
        language_tag = self.preference.code
        self.capture.start(
            language_tag,
            on_event=lambda event: self.post(TranscriptReceived(event)),
            on_error=lambda error: self.post(CaptureFailed(error)),
        )

    def _interrupt_output(self) -> None:
        self.output.interrupt()
        if self._playback_active:
            self._playback_id += 1
            self._playback_active = False

    def _speak(self, text: str, language_tag: str, retried: bool = False) -> SpeechJob:
        self._playback_id += 1
        playback_id = self._playback_id
        self._playback_active = True
        self._playback_text = text
        self._playback_tag = language_tag
        self._playback_retried = retried

        try:
            voice: Optional[Voice] = select_voice(language_tag, self.catalog.snapshot())
        except VoiceNotFoundError:
            voice = None

        job = self.output.speak(text, voice, language_tag)
        job.add_done_callback(
            lambda j: self.post(PlaybackSettled(playback_id, j.outcome, j.error))
        )
        return job

    # ---- Handlers ----
    def _on_toggle_capture(self, event: ToggleCapture) -> None:
        if self.state is ConversationState.IDLE:
            self._start_listening()
            self._set_state(ConversationState.LISTENING)
            self._set_status(STATUS_LISTENING)
        else:
            self._on_stop_capture(StopCapture())

    def _on_stop_capture(self, event: StopCapture) -> None:
        # In-flight output and replies are left alone
        self.capture.stop()
        if self.state is not ConversationState.IDLE:
            self._set_state(ConversationState.IDLE)
            self._set_status(STATUS_NEXT_QUESTION)

    def _on_interrupt(self, event: InterruptRequested) -> None:
        self._interrupt_output()
        if self.state is ConversationState.SPEAKING:
            self._set_state(self._resting_state())
            self._set_status(STATUS_NEXT_QUESTION)

    def _on_replay(self, event: ReplayRequested) -> None:
        if self.state is ConversationState.AWAITING_RESPONSE:
            logger.info("Replay ignored while a reply is pending")
            return
        last = self.transcript.last_assistant()
        if last is None:
            return
        self._interrupt_output()
        self._speak(last.text, self.preference.code)
        self._set_state(ConversationState.SPEAKING)
        self._set_status(STATUS_RESPONDING)

    def _on_language_selected(self, event: LanguageSelected) -> None:
        requested = event.language_tag
        code = resolve_language(requested, self._supported, self.baseline_language)
        if code.lower() != requested.lower():
            # Only languages with an installed voice can be selected
            code = resolve_language(self.preference.code, self._supported, self.baseline_language)
            logger.warning(f"No installed voice speaks {requested}; staying on {code}")
        if not self.preference.set(code):
            return
        if self.capture.active:
            self.capture.stop()
            self._start_listening()

    def _on_transcript(self, event: TranscriptReceived) -> None:
        capture_event = event.event
        if not capture_event.is_final:
            return
        if self.state is ConversationState.IDLE:
            logger.debug("Transcript ignored while idle")
            return
        try:
            text = validate_text_input(capture_event.partial_text)
        except ValidationError as e:
            # The relay drops invalid messages without a reply, so they never become turns
            logger.warning(f"Transcript not sent: {e}")
            return

        self._interrupt_output()
        self._record(text, Sender.USER)

        if not self._channel_ready() or not self.channel.send(protocol.UserMessage(text)):
            logger.warning("Relay not ready; message not sent")
            self._set_state(ConversationState.LISTENING)
            self._set_status(STATUS_CONNECTION_LOST)
            return

        turn_id = next(self._turn_ids)
        if self._pending_turns:
            logger.info(f"Turn {turn_id} supersedes {len(self._pending_turns)} in-flight turn(s)")
        self._pending_turns.append(turn_id)
        self._latest_turn = turn_id
        self._set_state(ConversationState.AWAITING_RESPONSE)
        self._set_status(STATUS_PROCESSING)

    def _on_reply(self, event: ReplyReceived) -> None:
        if not self._pending_turns:
            logger.warning("Reply with no turn in flight; discarded")
            return
        turn_id = self._pending_turns.popleft()
        if turn_id != self._latest_turn:
            logger.info(f"Discarding reply for superseded turn {turn_id}")
            return

        self._latest_turn = None
        self._record(event.text, Sender.ASSISTANT)
        self._interrupt_output()
        self._speak(event.text, self.preference.code)
        self._set_state(ConversationState.SPEAKING)
        self._set_status(STATUS_RESPONDING)

    def _on_server_error(self, event: ServerErrorReceived) -> None:
        self._set_status(f"Error: {event.message}")
        if not self._pending_turns:
            return
        turn_id = self._pending_turns.popleft()
        if turn_id == self._latest_turn:
            self._latest_turn = None
            if self.state is ConversationState.AWAITING_RESPONSE:
                self._set_state(self._resting_state())

    def _on_channel_ready(self, event: ChannelReady) -> None:
        self._chat_ready = True
        self._set_status(STATUS_READY)

    def _on_channel_lost(self, event: ChannelLost) -> None:
        self._chat_ready = False
        if self._pending_turns:
            logger.info(f"Abandoning {len(self._pending_turns)} in-flight turn(s)")
        self._pending_turns.clear()
        self._latest_turn = None
        self.capture.stop()
        self._interrupt_output()
        self._set_state(ConversationState.IDLE)
        if event.error.operation == "connect":
            self._set_status(STATUS_CONNECTION_ERROR)
        else:
            self._set_status(STATUS_CONNECTION_LOST)

    def _on_capture_failed(self, event: CaptureFailed) -> None:
        self._set_status(f"Error: {event.error.reason}")
        self.capture.stop()
        if self.state is ConversationState.LISTENING:
            self._set_state(ConversationState.IDLE)

    def _on_playback_settled(self, event: PlaybackSettled) -> None:
        if event.playback_id != self._playback_id or not self._playback_active:
            return
        self._playback_active = False

        if event.outcome is PlaybackOutcome.FAILED:
            if not self._playback_retried and self._playback_tag.lower() != self.baseline_language.lower():
                logger.warning(f"Playback in {self._playback_tag} failed ({event.error}); "
                               f"retrying in {self.baseline_language}")
                self._speak(self._playback_text, self.baseline_language, retried=True)
                return
            logger.error(f"Playback failed: {event.error}")
            self._set_status(STATUS_VOICE_ERROR)
        else:
            self._set_status(STATUS_NEXT_QUESTION)

        if self.state is ConversationState.SPEAKING:
            self._set_state(self._resting_state())

    def _on_catalog_changed(self, event: CatalogChanged) -> None:
        self._supported = supported_languages(event.voices)
        resolved = resolve_language(self.preference.code, self._supported, self.baseline_language)
        if resolved != self.preference.code:
            logger.info(f"{self.preference.code} no longer supported; falling back to {resolved}")
            self._on_language_selected(LanguageSelected(resolved))


__all__ = [
    "ConversationState",
    "ConversationController",
    "ToggleCapture",
    "StopCapture",
    "InterruptRequested",
    "ReplayRequested",
    "LanguageSelected",
    "TranscriptReceived",
    "CaptureFailed",
    "ReplyReceived",
    "ServerErrorReceived",
    "ChannelReady",
    "ChannelLost",
    "PlaybackSettled",
    "CatalogChanged",
]
