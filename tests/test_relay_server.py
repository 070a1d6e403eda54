"""End-to-end tests for RelayServer over a real localhost WebSocket."""

import json
import urllib.request

import pytest
from websockets.exceptions import InvalidStatus
from websockets.sync.client import connect

from conftest import ORIGIN, EchoProvider
from revoltbot.relay_server import PROCESSING_ERROR, RelayServer


@pytest.fixture
def relay():
    provider = EchoProvider()
    server = RelayServer(provider, "Revolt prompt", host="127.0.0.1", port=0,
                         path="/ws", allowed_origin=ORIGIN)
    server.start()
    try:
        yield server, provider
    finally:
        server.stop()


def _connect(server, path="/ws", origin=ORIGIN):
    return connect(f"ws://127.0.0.1:{server.port}{path}", origin=origin, open_timeout=2)


def _recv(ws):
    return json.loads(ws.recv(timeout=2))


def test_start_chat_then_message(relay):
    server, provider = relay
    with _connect(server) as ws:
        ws.send(json.dumps({"type": "start_chat"}))
        assert _recv(ws) == {"type": "chat_started"}

        ws.send(json.dumps({"type": "message", "text": "RV400 range?"}))
        assert _recv(ws) == {"type": "response", "text": "echo: RV400 range?", "isFinal": True}

    assert provider.instructions == ["Revolt prompt"]


def test_message_before_start_chat_is_dropped(relay):
    server, provider = relay
    with _connect(server) as ws:
        ws.send(json.dumps({"type": "message", "text": "too early"}))
        ws.send(json.dumps({"type": "start_chat"}))
        # The first frame back is chat_started: nothing was sent for the early message
        assert _recv(ws) == {"type": "chat_started"}
    assert provider.seen == []


def test_provider_failure_sends_error_and_keeps_connection(relay):
    server, _ = relay
    with _connect(server) as ws:
        ws.send(json.dumps({"type": "start_chat"}))
        _recv(ws)

        ws.send(json.dumps({"type": "message", "text": "fail"}))
        assert _recv(ws) == {"type": "error", "message": PROCESSING_ERROR}

        ws.send(json.dumps({"type": "message", "text": "crash"}))
        assert _recv(ws) == {"type": "error", "message": PROCESSING_ERROR}

        ws.send(json.dumps({"type": "message", "text": "still here?"}))
        assert _recv(ws)["text"] == "echo: still here?"


def test_malformed_frames_are_ignored(relay):
    server, _ = relay
    with _connect(server) as ws:
        ws.send("not json")
        ws.send(json.dumps({"type": "bogus"}))
        ws.send(json.dumps({"type": "response", "text": "clients do not send these"}))
        ws.send(json.dumps({"type": "start_chat"}))
        assert _recv(ws) == {"type": "chat_started"}


def test_second_start_chat_replaces_session(relay):
    server, provider = relay
    with _connect(server) as ws:
        ws.send(json.dumps({"type": "start_chat"}))
        _recv(ws)
        ws.send(json.dumps({"type": "start_chat"}))
        _recv(ws)
        assert server.active_sessions == 1
    assert len(provider.instructions) == 2
    assert provider.closed >= 1


def test_each_connection_gets_its_own_session(relay):
    server, provider = relay
    with _connect(server) as a, _connect(server) as b:
        a.send(json.dumps({"type": "start_chat"}))
        b.send(json.dumps({"type": "start_chat"}))
        _recv(a)
        _recv(b)
        assert server.active_sessions == 2
    assert len(provider.instructions) == 2


def test_wrong_origin_is_rejected(relay):
    server, _ = relay
    with pytest.raises(InvalidStatus):
        _connect(server, origin="http://evil.example")


def test_wrong_path_is_rejected(relay):
    server, _ = relay
    with pytest.raises(InvalidStatus) as exc:
        _connect(server, path="/other")
    assert exc.value.response.status_code == 404


def test_health_endpoint(relay):
    server, _ = relay
    with urllib.request.urlopen(f"http://127.0.0.1:{server.port}/health", timeout=2) as resp:
        assert resp.status == 200
        assert resp.headers["Content-Type"] == "application/json"
        body = json.loads(resp.read())
    assert body["service"] == "revoltbot-relay"
    assert body["active_sessions"] == 0
    assert "total_errors" in body["errors"]
