#!/usr/bin/env python3
"""
RevoltBot chat sessions

A ChatSession owns one conversation with the language model: the provider
session handle plus the ordered message history. The relay server creates
one per connection.
"""
from __future__ import annotations

import threading
import uuid
from typing import Any, Dict, List, Optional, Protocol, Tuple

import requests

from .error_handler import ProviderError
from .logging_utils import setup_logger
from .transcript import Message, Sender, TranscriptLog

logger = setup_logger("revoltbot.chat_session", "logs/chat_session.log")


class ProviderSession(Protocol):
    def send(self, text: str) -> str: ...

    def close(self) -> None: ...


class ChatProvider(Protocol):
    def create_session(self, system_instruction: str) -> ProviderSession: ...


class GeminiChatHandle:
    """Multi-turn chat against the Gemini generateContent endpoint"""

    def __init__(self, provider: "GeminiProvider", system_instruction: str) -> None:
        self._provider = provider
        self._system_instruction = system_instruction
        self._contents: List[Dict[str, Any]] = []
        self._closed = False
        # Calls on one handle are serialized so history stays ordered
        self._lock = threading.Lock()

    def _payload(self, contents: List[Dict[str, Any]]) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "contents": contents,
            "generationConfig": {"maxOutputTokens": self._provider.max_output_tokens},
        }
        if self._system_instruction:
            payload["systemInstruction"] = {"parts": [{"text": self._system_instruction}]}
        return payload

    def send(self, text: str) -> str:
        with self._lock:
            if self._closed:
                raise ProviderError("Chat session is closed", reason=ProviderError.CLOSED)

            contents = self._contents + [{"role": "user", "parts": [{"text": text}]}]
            reply = self._provider.generate(self._payload(contents))

            # History only advances on a successful exchange
            self._contents = contents + [{"role": "model", "parts": [{"text": reply}]}]
            return reply

    def close(self) -> None:
        self._closed = True


class GeminiProvider:
    """Gemini REST client; one instance is shared by every connection"""

    def __init__(self, api_key: str, model: str = "gemini-1.5-flash-latest",
                 max_output_tokens: int = 500, timeout: float = 30.0,
                 base_url: str = "https://generativelanguage.googleapis.com/v1beta",
                 http: Any = None) -> None:
        self.api_key = api_key
        self.model = model
        self.max_output_tokens = max_output_tokens
        self.timeout = timeout
        self.base_url = base_url.rstrip("/")
        self.http = http if http is not None else requests

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}/models/{self.model}:generateContent"

    def create_session(self, system_instruction: str) -> GeminiChatHandle:
        return GeminiChatHandle(self, system_instruction)

    def generate(self, payload: Dict[str, Any]) -> str:
        """POST one generateContent request and return the reply text"""
        try:
            r = self.http.post(
                self.endpoint,
                json=payload,
                headers={"x-goog-api-key": self.api_key},
                timeout=self.timeout,
            )
        except requests.exceptions.Timeout as e:
            raise ProviderError(f"Model request timed out after {self.timeout}s",
                                reason=ProviderError.TIMEOUT) from e
        except requests.exceptions.RequestException as e:
            raise ProviderError(f"Model request failed: {e}", reason=ProviderError.NETWORK) from e

        if r.status_code == 429:
            raise ProviderError("Model quota exhausted", reason=ProviderError.QUOTA)
        if not r.ok:
            raise ProviderError(f"Model returned HTTP {r.status_code}: {_error_message(r)}",
                                reason=ProviderError.MODEL)

        try:
            data = r.json()
        except ValueError as e:
            raise ProviderError("Model returned a malformed body", reason=ProviderError.MODEL) from e

        text = extract_text(data)
        if not text:
            raise ProviderError("Model returned no text", reason=ProviderError.EMPTY)
        return text


def extract_text(data: Any) -> str:
    """Concatenate the text parts of the first candidate"""
    try:
        parts = data["candidates"][0]["content"]["parts"]
    except (KeyError, IndexError, TypeError):
        return ""
    return "".join(p.get("text", "") for p in parts if isinstance(p, dict)).strip()


def _error_message(response: Any) -> str:
    try:
        return str(response.json()["error"]["message"])
    except (ValueError, KeyError, TypeError):
        return (response.text or "")[:200]


class ChatSession:
    """One conversation: provider handle plus ordered history"""

    def __init__(self, provider: ChatProvider, system_instruction: str,
                 session_id: Optional[str] = None) -> None:
        self.session_id = session_id or str(uuid.uuid4())[:8]
        self._system_instruction = system_instruction
        self._handle = provider.create_session(system_instruction)
        self._history = TranscriptLog()
        self._closed = False
        logger.info(f"Chat session {self.session_id} started")

    @property
    def system_instruction(self) -> str:
        return self._system_instruction

    @property
    def history(self) -> Tuple[Message, ...]:
        return self._history.messages

    @property
    def closed(self) -> bool:
        return self._closed

    def send_and_await_reply(self, text: str) -> str:
        """Forward `text` to the model and return its reply.

        Raises:
            ProviderError: the model call failed; history is unchanged.
        """
        if self._closed:
            raise ProviderError("Chat session is closed", reason=ProviderError.CLOSED)

        reply = self._handle.send(text)
        if not reply or not reply.strip():
            raise ProviderError("Model returned no text", reason=ProviderError.EMPTY)

        self._history.append(text, Sender.USER)
        self._history.append(reply, Sender.ASSISTANT)
        return reply

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self._handle.close()
        finally:
            logger.info(f"Chat session {self.session_id} closed after {len(self._history)} messages")


__all__ = [
    "ChatSession",
    "ChatProvider",
    "ProviderSession",
    "GeminiProvider",
    "GeminiChatHandle",
    "extract_text",
]
