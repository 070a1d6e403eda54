#!/usr/bin/env python3
"""
RevoltBot relay client

WebSocket client for the relay server. Sends `start_chat` on every open,
dispatches inbound envelopes to registered handlers, and reconnects after a
fixed delay for as long as it runs.
"""
from __future__ import annotations

import queue
import threading
from typing import Callable, Dict, Iterator, List, Optional

from websockets.exceptions import ConnectionClosed, InvalidHandshake, InvalidURI
from websockets.sync.client import connect as ws_connect

from . import protocol
from .error_handler import ChannelError, ProtocolError
from .logging_utils import setup_logger

logger = setup_logger("revoltbot.relay_client", "logs/relay_client.log")

Handler = Callable[[protocol.Envelope], None]


class RelayClient:
    def __init__(
        self,
        url: str = "ws://localhost:3000/ws",
        origin: Optional[str] = None,
        reconnect_delay: float = 3.0,
        open_timeout: float = 5.0,
        on_connect: Optional[Callable[[], None]] = None,
        on_disconnect: Optional[Callable[[ChannelError], None]] = None,
        inbox_size: int = 256,
    ) -> None:
        self.url = url
        self.origin = origin
        self.reconnect_delay = reconnect_delay
        self.open_timeout = open_timeout
        self.on_connect = on_connect
        self.on_disconnect = on_disconnect

        self.running = False
        self.connected = False
        self.reconnect_attempts = 0

        self._ws = None
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._send_lock = threading.Lock()
        self._inbox: "queue.Queue[protocol.Envelope]" = queue.Queue(maxsize=inbox_size)

        self.message_handlers: Dict[str, List[Handler]] = {}

    # ---- Public API ----
    def start(self) -> None:
        if self.running:
            return
        self.running = True
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="relay-client", daemon=True)
        self._thread.start()
        logger.info(f"RelayClient starting for {self.url}")

    def stop(self) -> None:
        self.running = False
        self._stop_event.set()
        ws = self._ws
        if ws is not None:
            ws.close()
        if self._thread:
            self._thread.join(timeout=5)
            self._thread = None
        self.connected = False
        logger.info("RelayClient stopped")

    def is_connected(self) -> bool:
        return bool(self.connected)

    def register_handler(self, message_type: str, handler: Handler) -> None:
        self.message_handlers.setdefault(message_type, []).append(handler)

    def set_disconnect_callback(self, callback: Callable[[ChannelError], None]) -> None:
        self.on_disconnect = callback

    def send(self, envelope: protocol.Envelope) -> bool:
        """Send one envelope; False when there is no open connection"""
        ws = self._ws
        if not self.connected or ws is None:
            logger.warning(f"Not connected to relay; dropping '{envelope.type}'")
            return False
        try:
            with self._send_lock:
                ws.send(protocol.encode(envelope))
            return True
        except ConnectionClosed as e:
            logger.warning(f"Relay send failed: {e}")
            return False

    def inbound(self, timeout: Optional[float] = None) -> Iterator[protocol.Envelope]:
        """Yield received envelopes until `timeout` passes with none, or the client stops"""
        while self.running or not self._inbox.empty():
            try:
                yield self._inbox.get(timeout=timeout)
            except queue.Empty:
                return

    # ---- Internals ----
    def _run(self) -> None:
        while self.running:
            try:
                logger.info(f"Connecting to relay {self.url}")
                # _serve_connection handles its own errors; only opening can raise here
                with ws_connect(self.url, origin=self.origin, open_timeout=self.open_timeout) as ws:
                    self._serve_connection(ws)
            except (OSError, TimeoutError, InvalidHandshake, InvalidURI) as e:
                logger.warning(f"Relay connect failed: {e}")
                if self.running:
                    self._notify_disconnect(ChannelError(f"Connection error: {e}",
                                                        component="relay_client", operation="connect"))

            if not self.running:
                break
            self.reconnect_attempts += 1
            logger.info(f"Reconnecting in {self.reconnect_delay}s (attempt {self.reconnect_attempts})")
            if self._stop_event.wait(self.reconnect_delay):
                break

    def _serve_connection(self, ws) -> None:
        self._ws = ws
        self.connected = True
        logger.info("Relay connected")
        try:
            self.send(protocol.StartChat())
            self._notify_connect()
            for raw in ws:
                try:
                    envelope = protocol.decode(raw)
                except ProtocolError as e:
                    logger.warning(f"Dropping malformed envelope from relay: {e}")
                    continue
                self._dispatch(envelope)
        except (ConnectionClosed, OSError) as e:
            logger.debug(f"Relay connection closed: {e}")
        finally:
            self.connected = False
            self._ws = None

        if self.running:
            self._notify_disconnect(ChannelError("Connection lost", component="relay_client",
                                                 operation="receive"))

    def _dispatch(self, envelope: protocol.Envelope) -> None:
        try:
            self._inbox.put_nowait(envelope)
        except queue.Full:
            # Nobody is draining inbound(); keep the newest
            try:
                self._inbox.get_nowait()
            except queue.Empty:
                pass
            self._inbox.put_nowait(envelope)

        for handler in list(self.message_handlers.get(envelope.type, [])):
            try:
                handler(envelope)
            except Exception as e:
                logger.error(f"Relay handler for '{envelope.type}' failed: {e}")

    def _notify_connect(self) -> None:
        if self.on_connect:
            try:
                self.on_connect()
            except Exception as e:
                logger.error(f"Connect callback failed: {e}")

    def _notify_disconnect(self, error: ChannelError) -> None:
        logger.warning(f"Relay disconnected: {error}")
        if self.on_disconnect:
            try:
                self.on_disconnect(error)
            except Exception as e:
                logger.error(f"Disconnect callback failed: {e}")


__all__ = ["RelayClient"]
