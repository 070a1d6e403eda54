"""Tests for RelayClient connection handling and reconnects."""

import socket
from typing import List

import pytest

from conftest import ORIGIN, EchoProvider, wait_for
from revoltbot import protocol
from revoltbot.error_handler import ChannelError
from revoltbot.relay_client import RelayClient
from revoltbot.relay_server import RelayServer


@pytest.fixture
def relay():
    provider = EchoProvider()
    server = RelayServer(provider, "Revolt prompt", host="127.0.0.1", port=0,
                         path="/ws", allowed_origin=ORIGIN)
    server.start()
    try:
        yield server
    finally:
        server.stop()


def _client(port: int, disconnects: List[ChannelError], delay: float = 0.2, on_connect=None) -> RelayClient:
    return RelayClient(
        url=f"ws://127.0.0.1:{port}/ws",
        origin=ORIGIN,
        reconnect_delay=delay,
        open_timeout=1.0,
        on_connect=on_connect,
        on_disconnect=disconnects.append,
    )


def _free_port() -> int:
    with socket.socket() as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


def test_start_chat_sent_on_open_and_reply_dispatched(relay):
    started, replies, disconnects = [], [], []
    client = _client(relay.port, disconnects)
    client.register_handler("chat_started", started.append)
    client.register_handler("response", replies.append)
    client.start()
    try:
        assert wait_for(lambda: started, timeout=3.0)
        assert client.is_connected()
        assert client.send(protocol.UserMessage("Tell me about RV300")) is True
        assert wait_for(lambda: replies, timeout=3.0)
        assert replies[0] == protocol.AssistantMessage("echo: Tell me about RV300")
    finally:
        client.stop()
    assert disconnects == []


def test_reconnects_once_after_fixed_delay(relay):
    started, disconnects, connects = [], [], []
    client = _client(relay.port, disconnects, delay=0.3, on_connect=lambda: connects.append(True))
    client.register_handler("chat_started", started.append)
    client.start()
    try:
        assert wait_for(lambda: len(started) == 1, timeout=3.0)
        relay.disconnect_all()

        assert wait_for(lambda: len(started) == 2, timeout=3.0)
        assert client.reconnect_attempts == 1
        assert relay.sessions_created == 2
        assert len(disconnects) == 1
        assert disconnects[0].operation == "receive"
        assert len(connects) == 2
    finally:
        client.stop()


def test_failed_connect_is_retried():
    disconnects: List[ChannelError] = []
    client = _client(_free_port(), disconnects, delay=0.05)
    client.start()
    try:
        assert wait_for(lambda: client.reconnect_attempts >= 2, timeout=3.0)
        assert not client.is_connected()
        assert disconnects and all(e.operation == "connect" for e in disconnects)
    finally:
        client.stop()
    assert client.running is False


def test_send_without_connection_returns_false():
    client = RelayClient(url="ws://127.0.0.1:1/ws")
    assert client.send(protocol.StartChat()) is False


def test_inbound_yields_received_envelopes(relay):
    client = _client(relay.port, [])
    client.start()
    try:
        received = next(client.inbound(timeout=3.0))
        assert received == protocol.ChatStarted()
        assert list(client.inbound(timeout=0.2)) == []
    finally:
        client.stop()


def test_stop_interrupts_reconnect_wait():
    client = _client(_free_port(), [], delay=30.0)
    client.start()
    assert wait_for(lambda: client.reconnect_attempts == 1, timeout=3.0)
    client.stop()
    assert client._thread is None
