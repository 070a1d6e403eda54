from typing import Any, Dict, List

import pytest
import requests

from revoltbot.chat_session import ChatSession, GeminiProvider, extract_text
from revoltbot.error_handler import ProviderError
from revoltbot.transcript import Sender


class FakeResponse:
    def __init__(self, status_code: int = 200, payload: Any = None, text: str = ""):
        self.status_code = status_code
        self._payload = payload
        self.text = text

    @property
    def ok(self) -> bool:
        return self.status_code < 400

    def json(self):
        if self._payload is None:
            raise ValueError("no json")
        return self._payload


def _reply(text: str) -> Dict[str, Any]:
    return {"candidates": [{"content": {"role": "model", "parts": [{"text": text}]}}]}


class FakeHttp:
    def __init__(self, responses):
        self.responses = list(responses)
        self.calls: List[Dict[str, Any]] = []

    def post(self, url, json=None, headers=None, timeout=None):
        self.calls.append({"url": url, "json": json, "headers": headers, "timeout": timeout})
        result = self.responses.pop(0)
        if isinstance(result, Exception):
            raise result
        return result


def _provider(http: FakeHttp) -> GeminiProvider:
    return GeminiProvider(api_key="test-key", model="gemini-1.5-flash-latest",
                          max_output_tokens=500, timeout=30, http=http)


def test_request_shape_and_history():
    http = FakeHttp([FakeResponse(payload=_reply("RV400 starts at 1.03 lakh")),
                     FakeResponse(payload=_reply("About 150 km"))])
    session = ChatSession(_provider(http), "You are the Revolt assistant")

    assert session.send_and_await_reply("Price?") == "RV400 starts at 1.03 lakh"
    assert session.send_and_await_reply("Range?") == "About 150 km"

    first, second = http.calls
    assert first["url"].endswith("/models/gemini-1.5-flash-latest:generateContent")
    assert first["headers"] == {"x-goog-api-key": "test-key"}
    assert first["timeout"] == 30
    assert first["json"]["systemInstruction"] == {"parts": [{"text": "You are the Revolt assistant"}]}
    assert first["json"]["generationConfig"] == {"maxOutputTokens": 500}
    assert [c["role"] for c in second["json"]["contents"]] == ["user", "model", "user"]

    assert [(m.sender, m.text) for m in session.history] == [
        (Sender.USER, "Price?"),
        (Sender.ASSISTANT, "RV400 starts at 1.03 lakh"),
        (Sender.USER, "Range?"),
        (Sender.ASSISTANT, "About 150 km"),
    ]


@pytest.mark.parametrize("result, reason", [
    (requests.exceptions.Timeout("slow"), ProviderError.TIMEOUT),
    (requests.exceptions.ConnectionError("down"), ProviderError.NETWORK),
    (FakeResponse(429, {"error": {"message": "quota"}}), ProviderError.QUOTA),
    (FakeResponse(500, {"error": {"message": "internal"}}), ProviderError.MODEL),
    (FakeResponse(200, None, text="<html>"), ProviderError.MODEL),
    (FakeResponse(200, {"candidates": []}), ProviderError.EMPTY),
    (FakeResponse(200, _reply("   ")), ProviderError.EMPTY),
])
def test_failures_map_to_reasons_and_keep_history(result, reason):
    http = FakeHttp([FakeResponse(payload=_reply("hello")), result, FakeResponse(payload=_reply("again"))])
    session = ChatSession(_provider(http), "sys")
    session.send_and_await_reply("hi")

    with pytest.raises(ProviderError) as exc:
        session.send_and_await_reply("fails")
    assert exc.value.reason == reason
    assert len(session.history) == 2

    session.send_and_await_reply("retry by user")
    assert [c["role"] for c in http.calls[-1]["json"]["contents"]] == ["user", "model", "user"]


def test_closed_session_refuses_to_send():
    session = ChatSession(_provider(FakeHttp([])), "sys")
    session.close()
    session.close()
    with pytest.raises(ProviderError) as exc:
        session.send_and_await_reply("hello")
    assert exc.value.reason == ProviderError.CLOSED


def test_system_instruction_is_read_only():
    session = ChatSession(_provider(FakeHttp([])), "fixed prompt")
    assert session.system_instruction == "fixed prompt"
    with pytest.raises(AttributeError):
        session.system_instruction = "changed"


def test_sessions_do_not_share_history():
    http = FakeHttp([FakeResponse(payload=_reply("a")), FakeResponse(payload=_reply("b"))])
    provider = _provider(http)
    one, two = ChatSession(provider, "sys"), ChatSession(provider, "sys")
    one.send_and_await_reply("first")
    two.send_and_await_reply("second")
    assert len(http.calls[1]["json"]["contents"]) == 1
    assert one.session_id != two.session_id


def test_extract_text_joins_parts():
    data = {"candidates": [{"content": {"parts": [{"text": "Hello "}, {"text": "there"}]}}]}
    assert extract_text(data) == "Hello there"
    assert extract_text({}) == ""
