"""
Append-only conversation transcript shared by the client controller and the
server chat sessions.
"""
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterator, List, Optional, Tuple


class Sender(Enum):
    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True)
class Message:
    """One utterance in the conversation; immutable once created"""
    text: str
    sender: Sender
    timestamp: float = field(default_factory=time.time)


class TranscriptLog:
    """Ordered record of messages; entries are only ever appended"""

    def __init__(self) -> None:
        self._messages: List[Message] = []
        self._lock = threading.Lock()

    def append(self, text: str, sender: Sender) -> Message:
        message = Message(text=text, sender=sender)
        with self._lock:
            self._messages.append(message)
        return message

    @property
    def messages(self) -> Tuple[Message, ...]:
        with self._lock:
            return tuple(self._messages)

    def last_from(self, sender: Sender) -> Optional[Message]:
        with self._lock:
            for message in reversed(self._messages):
                if message.sender is sender:
                    return message
        return None

    def last_assistant(self) -> Optional[Message]:
        return self.last_from(Sender.ASSISTANT)

    def __len__(self) -> int:
        with self._lock:
            return len(self._messages)

    def __iter__(self) -> Iterator[Message]:
        return iter(self.messages)
