#!/usr/bin/env python3
"""
RevoltBot relay protocol

JSON envelopes exchanged between the voice client and the relay server over
the WebSocket channel. Each envelope carries a `type` discriminator:

    client -> server   start_chat, message{text}
    server -> client   chat_started, response{text, isFinal}, error{message}
"""
from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, ClassVar, Dict, Union

from .error_handler import ProtocolError, ValidationError
from .validation import validate_json_object, validate_text_input


@dataclass(frozen=True)
class StartChat:
    type: ClassVar[str] = "start_chat"


@dataclass(frozen=True)
class UserMessage:
    text: str
    type: ClassVar[str] = "message"


@dataclass(frozen=True)
class AssistantMessage:
    text: str
    type: ClassVar[str] = "response"


@dataclass(frozen=True)
class ChatStarted:
    type: ClassVar[str] = "chat_started"


@dataclass(frozen=True)
class ErrorMessage:
    message: str
    type: ClassVar[str] = "error"


Envelope = Union[StartChat, UserMessage, AssistantMessage, ChatStarted, ErrorMessage]

ENVELOPE_TYPES = {
    cls.type: cls for cls in (StartChat, UserMessage, AssistantMessage, ChatStarted, ErrorMessage)
}


def to_dict(envelope: Envelope) -> Dict[str, Any]:
    """Wire representation of an envelope"""
    if isinstance(envelope, UserMessage):
        return {"type": envelope.type, "text": envelope.text}
    if isinstance(envelope, AssistantMessage):
        return {"type": envelope.type, "text": envelope.text, "isFinal": True}
    if isinstance(envelope, ErrorMessage):
        return {"type": envelope.type, "message": envelope.message}
    if isinstance(envelope, (StartChat, ChatStarted)):
        return {"type": envelope.type}
    raise ProtocolError(f"Not an envelope: {envelope!r}", component="protocol", operation="encode")


def encode(envelope: Envelope) -> str:
    return json.dumps(to_dict(envelope), ensure_ascii=False)


def _require_str(data: Dict[str, Any], field: str, mtype: str) -> str:
    value = data.get(field)
    if not isinstance(value, str):
        raise ProtocolError(f"'{mtype}' envelope requires a string '{field}'",
                            component="protocol", operation="decode")
    return value


def decode(raw: Union[str, bytes, Dict[str, Any]]) -> Envelope:
    """Parse one frame into an envelope.

    Raises:
        ProtocolError: the frame is not a JSON object, has an unknown type,
            or lacks the fields its type requires.
    """
    try:
        data = validate_json_object(raw)
    except ValidationError as e:
        raise ProtocolError(str(e), component="protocol", operation="decode") from e

    mtype = data.get("type")
    if mtype not in ENVELOPE_TYPES:
        raise ProtocolError(f"Unknown envelope type: {mtype!r}", component="protocol", operation="decode")

    if mtype == UserMessage.type:
        text = _require_str(data, "text", mtype)
        try:
            return UserMessage(text=validate_text_input(text))
        except ValidationError as e:
            raise ProtocolError(str(e), component="protocol", operation="decode") from e
    if mtype == AssistantMessage.type:
        return AssistantMessage(text=_require_str(data, "text", mtype))
    if mtype == ErrorMessage.type:
        return ErrorMessage(message=_require_str(data, "message", mtype))
    return ENVELOPE_TYPES[mtype]()


__all__ = [
    "StartChat",
    "UserMessage",
    "AssistantMessage",
    "ChatStarted",
    "ErrorMessage",
    "Envelope",
    "encode",
    "decode",
    "to_dict",
]
