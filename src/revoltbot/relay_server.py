#!/usr/bin/env python3
"""
RevoltBot relay server

Accepts WebSocket connections on the configured path and origin, keeps one
ChatSession per connection, and relays user text to the language model.
`GET /health` answers with a JSON status document.
"""
from __future__ import annotations

import itertools
import json
import logging
import threading
import time
from http import HTTPStatus
from typing import Any, Dict, Optional
from urllib.parse import urlparse

from websockets.exceptions import ConnectionClosed
from websockets.sync.server import serve

from . import protocol
from .chat_session import ChatProvider, ChatSession
from .error_handler import (ErrorSeverity, ProtocolError, ProviderError, error_context, get_error_handler,
                            handle_error)
from .logging_utils import log_with_context, setup_logger

logger = setup_logger("revoltbot.relay_server", "logs/relay_server.log")

PROCESSING_ERROR = "Error processing request"


class RelayServer:
    def __init__(self, provider: ChatProvider, system_instruction: str,
                 host: str = "0.0.0.0", port: int = 3000, path: str = "/ws",
                 allowed_origin: Optional[str] = "http://localhost:5173") -> None:
        self.provider = provider
        self.system_instruction = system_instruction
        self.host = host
        self._requested_port = port
        self.path = path
        self.allowed_origin = allowed_origin
        self._server = None
        self._thread: Optional[threading.Thread] = None
        self._running = False
        self._started_at: Optional[float] = None

        self._ids = itertools.count(1)
        self._lock = threading.Lock()
        self._connections: Dict[int, Any] = {}
        self._sessions: Dict[int, ChatSession] = {}
        self.sessions_created = 0

    @property
    def port(self) -> int:
        """Bound port once started (useful when constructed with port 0)"""
        if self._server is not None:
            return self._server.socket.getsockname()[1]
        return self._requested_port

    @property
    def active_sessions(self) -> int:
        with self._lock:
            return len(self._sessions)

    # ---- HTTP side ----
    def health(self) -> Dict[str, Any]:
        with self._lock:
            connections = len(self._connections)
            sessions = len(self._sessions)
        return {
            'service': 'revoltbot-relay',
            'status': 'ok',
            'path': self.path,
            'connections': connections,
            'active_sessions': sessions,
            'sessions_created': self.sessions_created,
            'uptime': round(time.time() - self._started_at, 1) if self._started_at else 0.0,
            'errors': get_error_handler().get_error_stats(),
        }

    def _process_request(self, connection, request):
        path = urlparse(request.path).path
        if path == "/health":
            response = connection.respond(HTTPStatus.OK, json.dumps(self.health()) + "\n")
            del response.headers["Content-Type"]
            response.headers["Content-Type"] = "application/json"
            return response
        if path != self.path:
            logger.info(f"Rejected request for {path}")
            return connection.respond(HTTPStatus.NOT_FOUND, "Not Found\n")
        return None

    # ---- WebSocket side ----
    def _send(self, websocket, envelope: protocol.Envelope) -> None:
        websocket.send(protocol.encode(envelope))

    def _handler(self, websocket) -> None:
        connection_id = next(self._ids)
        session: Optional[ChatSession] = None
        with self._lock:
            self._connections[connection_id] = websocket
        logger.info(f"Client {connection_id} connected from {websocket.remote_address}")

        try:
            for raw in websocket:
                try:
                    envelope = protocol.decode(raw)
                except ProtocolError as e:
                    logger.warning(f"Client {connection_id}: dropping malformed envelope: {e}")
                    continue

                if isinstance(envelope, protocol.StartChat):
                    if session is not None:
                        session.close()
                    session = ChatSession(self.provider, self.system_instruction)
                    with self._lock:
                        self._sessions[connection_id] = session
                        self.sessions_created += 1
                    self._send(websocket, protocol.ChatStarted())

                elif isinstance(envelope, protocol.UserMessage):
                    if session is None:
                        logger.warning(f"Client {connection_id}: message before start_chat; dropped")
                        continue
                    self._relay(websocket, connection_id, session, envelope.text)

                else:
                    logger.warning(f"Client {connection_id}: unexpected '{envelope.type}' envelope; dropped")
        except ConnectionClosed as e:
            logger.debug(f"Client {connection_id} connection closed: {e}")
        finally:
            with self._lock:
                self._connections.pop(connection_id, None)
                self._sessions.pop(connection_id, None)
            if session is not None:
                session.close()
            logger.info(f"Client {connection_id} disconnected")

    def _relay(self, websocket, connection_id: int, session: ChatSession, text: str) -> None:
        started = time.time()
        try:
            reply = session.send_and_await_reply(text)
        except ProviderError as e:
            handle_error(e, "relay_server", "generate", ErrorSeverity.MEDIUM,
                         session_id=session.session_id, connection_id=str(connection_id),
                         metadata={'reason': e.reason})
            self._send(websocket, protocol.ErrorMessage(PROCESSING_ERROR))
            return
        except Exception as e:
            handle_error(e, "relay_server", "generate", ErrorSeverity.HIGH,
                         session_id=session.session_id, connection_id=str(connection_id))
            self._send(websocket, protocol.ErrorMessage(PROCESSING_ERROR))
            return

        log_with_context(logger, logging.INFO, "Relayed model reply",
                         session_id=session.session_id, connection_id=connection_id,
                         chars_in=len(text), chars_out=len(reply),
                         latency_ms=int((time.time() - started) * 1000))
        self._send(websocket, protocol.AssistantMessage(reply))

    # ---- Lifecycle ----
    def _bind(self) -> None:
        origins = [self.allowed_origin] if self.allowed_origin else None
        with error_context("relay_server", "bind", ErrorSeverity.CRITICAL):
            self._server = serve(
                self._handler,
                self.host,
                self._requested_port,
                origins=origins,
                process_request=self._process_request,
            )
        self._started_at = time.time()
        logger.info(f"Relay listening on ws://{self.host}:{self.port}{self.path}")

    def start(self) -> None:
        """Bind and serve on a background thread"""
        if self._running:
            return
        self._bind()
        self._running = True
        self._thread = threading.Thread(target=self._server.serve_forever, name="relay-server", daemon=True)
        self._thread.start()

    def serve_forever(self) -> None:
        """Bind and serve on the calling thread until stop()"""
        if self._server is None:
            self._bind()
        self._running = True
        self._server.serve_forever()

    def disconnect_all(self) -> int:
        """Close every open client connection; returns how many were closed"""
        with self._lock:
            peers = list(self._connections.values())
        for ws in peers:
            try:
                ws.close()
            except ConnectionClosed:
                pass
        return len(peers)

    def stop(self) -> None:
        self._running = False
        if self._server is not None:
            self._server.shutdown()
        closed = self.disconnect_all()
        if self._thread:
            self._thread.join(timeout=3)
            self._thread = None
        self._server = None
        logger.info(f"Relay stopped ({closed} connections closed)")


__all__ = ["RelayServer", "PROCESSING_ERROR"]
