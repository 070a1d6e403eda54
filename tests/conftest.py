import os
import sys
import time
from typing import Callable

import pytest

sys.path.append(os.path.join(os.path.dirname(__file__), "..", "src"))


def wait_for(condition: Callable[[], bool], timeout: float = 5.0) -> bool:
    start = time.time()
    while time.time() - start < timeout:
        if condition():
            return True
        time.sleep(0.05)
    return False


@pytest.fixture(autouse=True)
def _no_audio_device(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("REVOLTBOT_NO_AUDIO", "1")


ORIGIN = "http://localhost:5173"


class EchoHandle:
    def __init__(self, provider, system_instruction):
        self.provider = provider
        self.system_instruction = system_instruction

    def send(self, text):
        from revoltbot.error_handler import ProviderError

        if text == "fail":
            raise ProviderError("quota", reason=ProviderError.QUOTA)
        if text == "crash":
            raise RuntimeError("unexpected")
        self.provider.seen.append(text)
        return f"echo: {text}"

    def close(self):
        self.provider.closed += 1


class EchoProvider:
    """Chat provider that answers with the user's own text"""

    def __init__(self):
        self.seen = []
        self.instructions = []
        self.closed = 0

    def create_session(self, system_instruction):
        self.instructions.append(system_instruction)
        return EchoHandle(self, system_instruction)
