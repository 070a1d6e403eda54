import io
import queue
import sys
import threading
import time
from typing import List

import pytest

from conftest import wait_for
from revoltbot.error_handler import CaptureError
from revoltbot.speech_capture import CaptureEvent, CaptureSupervisor, SpeechRecognitionEngine, TypedInputEngine


class ScriptedEngine:
    """Each listen() call plays the next scripted session"""

    def __init__(self, sessions):
        self.sessions = list(sessions)
        self.opened: List[str] = []
        self.stops = 0

    def listen(self, language_tag):
        self.opened.append(language_tag)
        session = self.sessions.pop(0) if self.sessions else []
        for item in session:
            if isinstance(item, Exception):
                raise item
            yield CaptureEvent(item, True)

    def stop(self):
        self.stops += 1


def test_sessions_open_lazily():
    engine = ScriptedEngine([["hello"]])
    supervisor = CaptureSupervisor(engine, restart_delay=0)
    events = supervisor.start_capture("hi-IN")
    assert engine.opened == []

    assert next(events) == CaptureEvent("hello", True)
    assert engine.opened == ["hi-IN"]


def test_ended_sessions_restart_while_active():
    engine = ScriptedEngine([["one"], [], ["two"]])
    supervisor = CaptureSupervisor(engine, restart_delay=0)
    events = supervisor.start_capture("en-IN")

    assert next(events).partial_text == "one"
    assert next(events).partial_text == "two"
    assert supervisor.restart_count == 2
    assert engine.opened == ["en-IN", "en-IN", "en-IN"]


def test_no_restart_after_stop():
    engine = ScriptedEngine([["one"], ["two"]])
    supervisor = CaptureSupervisor(engine, restart_delay=0)
    events = supervisor.start_capture("en-IN")
    assert next(events).partial_text == "one"

    supervisor.stop()
    assert list(events) == []
    assert engine.opened == ["en-IN"]
    assert supervisor.active is False
    assert engine.stops == 1


def test_stale_iterator_yields_nothing():
    engine = ScriptedEngine([["old"], ["new"]])
    supervisor = CaptureSupervisor(engine, restart_delay=0)
    stale = supervisor.start_capture("en-IN")
    fresh = supervisor.start_capture("hi-IN")

    assert list(stale) == []
    assert next(fresh).partial_text == "old"
    assert engine.opened == ["hi-IN"]


def test_capture_error_deactivates():
    engine = ScriptedEngine([[CaptureError("no-speech")]])
    supervisor = CaptureSupervisor(engine, restart_delay=0)
    events = supervisor.start_capture("en-IN")

    with pytest.raises(CaptureError) as exc:
        next(events)
    assert exc.value.reason == "no-speech"
    assert supervisor.active is False


def test_stop_wakes_restart_wait():
    engine = ScriptedEngine([[], ["never"]])
    supervisor = CaptureSupervisor(engine, restart_delay=30)
    events = supervisor.start_capture("en-IN")
    results = []

    t = threading.Thread(target=lambda: results.extend(events), daemon=True)
    t.start()
    assert wait_for(lambda: engine.opened == ["en-IN"], timeout=2.0)

    supervisor.stop()
    t.join(timeout=2.0)
    assert not t.is_alive()
    assert results == []


def test_background_pump_reports_events_and_errors():
    engine = ScriptedEngine([["first"], [CaptureError("network")]])
    supervisor = CaptureSupervisor(engine, restart_delay=0)
    events, errors = [], []

    supervisor.start("ta-IN", events.append, errors.append)
    assert wait_for(lambda: errors, timeout=2.0)
    assert [e.partial_text for e in events] == ["first"]
    assert errors[0].reason == "network"
    assert supervisor.active is False


def test_typed_input_engine_reads_lines_until_eof():
    engine = TypedInputEngine(stream=io.StringIO("What is the price?\n\nbye\n"))
    supervisor = CaptureSupervisor(engine, restart_delay=0)
    events = supervisor.start_capture("en-IN")

    assert next(events).partial_text == "What is the price?"
    assert next(events).partial_text == "bye"
    with pytest.raises(CaptureError) as exc:
        next(events)
    assert exc.value.reason == "aborted"


class FakeSpeechRecognition:
    """Stands in for the speech_recognition module; listen() blocks until a phrase is fed"""

    class WaitTimeoutError(Exception):
        pass

    class UnknownValueError(Exception):
        pass

    class RequestError(Exception):
        pass

    def __init__(self):
        self.phrases: "queue.Queue[str]" = queue.Queue()
        self.open_now = 0
        self.opened = 0
        self.max_open = 0
        self.recognized = []
        fake = self

        class Microphone:
            def __init__(self, device_index=None):
                pass

            def __enter__(self):
                fake.open_now += 1
                fake.opened += 1
                fake.max_open = max(fake.max_open, fake.open_now)
                return self

            def __exit__(self, *exc):
                fake.open_now -= 1
                return False

        class Recognizer:
            def adjust_for_ambient_noise(self, source, duration=1.0):
                pass

            def listen(self, source, timeout=None, phrase_time_limit=None):
                return fake.phrases.get(timeout=5)

            def recognize_google(self, audio, language=None):
                fake.recognized.append((audio, language))
                return audio

        self.Microphone = Microphone
        self.Recognizer = Recognizer


def test_restart_waits_for_the_stopped_session_microphone(monkeypatch: pytest.MonkeyPatch):
    fake = FakeSpeechRecognition()
    monkeypatch.setitem(sys.modules, "speech_recognition", fake)
    engine = SpeechRecognitionEngine(adjust_noise_seconds=0)
    supervisor = CaptureSupervisor(engine, restart_delay=0.01)
    events, errors = [], []

    supervisor.start("en-IN", events.append, errors.append)
    assert wait_for(lambda: fake.open_now == 1, timeout=2.0)

    # Switch language while the first session is still blocked in listen()
    supervisor.stop()
    supervisor.start("hi-IN", events.append, errors.append)
    time.sleep(0.2)
    assert fake.opened == 1

    fake.phrases.put("spoken before the switch")
    assert wait_for(lambda: fake.opened == 2, timeout=2.0)
    fake.phrases.put("RV400 range?")
    assert wait_for(lambda: events, timeout=2.0)
    assert wait_for(lambda: fake.opened == 3, timeout=2.0)

    supervisor.stop()
    fake.phrases.put("after stop")

    assert events == [CaptureEvent("RV400 range?", True)]
    assert fake.recognized == [("RV400 range?", "hi-IN")]
    assert fake.max_open == 1
    assert errors == []
