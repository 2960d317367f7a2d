import asyncio
from types import SimpleNamespace

import pytest

from KoriBackend.services.ai.gemini_chat import (
    MOCK_MODEL,
    GeminiChat,
    estimate_tokens,
    format_conversation,
    mock_reply,
)


class _Completions:
    def __init__(self, text=None, error=None):
        self.text = text
        self.error = error
        self.calls = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        if self.error:
            raise self.error
        message = SimpleNamespace(content=self.text)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def _client(completions):
    return SimpleNamespace(chat=SimpleNamespace(completions=completions))


def test_complete_returns_reply_with_metadata():
    completions = _Completions(text="  A thoughtful answer.  ")
    ai = GeminiChat(api_key="k", model="gemini-test", client=_client(completions))

    reply = asyncio.run(ai.complete("Hi"))

    assert reply.content == "A thoughtful answer."
    assert reply.model == "gemini-test"
    assert reply.token_count == estimate_tokens("A thoughtful answer.")
    assert completions.calls[0]["messages"] == [{"role": "user", "content": "Hi"}]
    assert reply.as_metadata()["model"] == "gemini-test"


def test_complete_without_key_raises():
    with pytest.raises(RuntimeError):
        asyncio.run(GeminiChat(api_key=None).complete("Hi"))


def test_complete_or_mock_falls_back_on_provider_error():
    ai = GeminiChat(api_key="k", client=_client(_Completions(error=RuntimeError("quota"))))

    reply = asyncio.run(ai.complete_or_mock("Hi"))

    assert reply.model == MOCK_MODEL
    assert reply == mock_reply("Hi")


def test_complete_or_mock_falls_back_on_empty_completion():
    ai = GeminiChat(api_key="k", client=_client(_Completions(text="   ")))

    assert asyncio.run(ai.complete_or_mock("Hi")).model == MOCK_MODEL


def test_mock_reply_is_deterministic():
    assert mock_reply("same prompt") == mock_reply("same prompt")
    assert mock_reply("same prompt").processing_time == 0


def test_estimate_tokens_rounds_up():
    assert estimate_tokens("") == 0
    assert estimate_tokens("abcde") == 2


def test_format_conversation_keeps_last_ten_messages():
    history = [("user" if i % 2 == 0 else "assistant", f"m{i}") for i in range(12)]

    text = format_conversation(history, persona="You are Ana.")

    assert text.startswith("You are Ana.")
    assert "m0" not in text and "m1\n" not in text
    assert "Human: m2" in text
    assert "Assistant: m11" in text
    assert text.endswith("Assistant: ")


def test_format_conversation_empty_history():
    assert format_conversation([]) == "Hello! How can I help you today?"
