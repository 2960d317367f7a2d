import hashlib
import logging
import math
import time
from dataclasses import dataclass
from functools import lru_cache
from typing import Iterable, Optional

from openai import AsyncOpenAI

from KoriBackend.config import Settings, get_settings
from KoriBackend.services.openai_compatible_client import get_async_openai_compatible_client

logger = logging.getLogger(__name__)

MOCK_MODEL = "mock-ai-model"
MOCK_RESPONSES = (
    "That's an interesting question. Let me help you with that.",
    "I understand what you're asking. Here's what I think...",
    "Based on the context, I would suggest...",
    "That's a great point. Let me elaborate on that.",
    "I can help you with that. Here's my response...",
)
CONTEXT_WINDOW = 10


@dataclass(frozen=True)
class AIReply:
    content: str
    token_count: int
    processing_time: int
    model: str

    def as_metadata(self) -> dict:
        return {"tokenCount": self.token_count, "processingTime": self.processing_time, "model": self.model}


def estimate_tokens(text: str) -> int:
    return math.ceil(len(text) / 4)


# Deterministic stand-in used when Gemini is unconfigured or fails
def mock_reply(prompt: str) -> AIReply:
    digest = hashlib.sha256((prompt or "").encode("utf-8")).digest()
    content = MOCK_RESPONSES[digest[0] % len(MOCK_RESPONSES)]
    return AIReply(content=content, token_count=estimate_tokens(content), processing_time=0, model=MOCK_MODEL)


# Renders the tail of a thread as a Human/Assistant transcript
def format_conversation(history: Iterable[tuple[str, str]], persona: Optional[str] = None) -> str:
    recent = list(history)[-CONTEXT_WINDOW:]
    if not recent:
        return "Hello! How can I help you today?"

    lines = []
    if persona:
        lines.append(persona)
        lines.append("")
    lines.append("You are a helpful AI assistant. Here's our conversation so far:")
    lines.append("")
    for role, content in recent:
        speaker = "Human" if role == "user" else "Assistant"
        lines.append(f"{speaker}: {content}")
    lines.append("")
    lines.append("Assistant: ")
    return "\n".join(lines)


# Gemini text completion through its OpenAI-compatible endpoint
class GeminiChat:
    def __init__(self, api_key: Optional[str], model: str = "gemini-1.5-flash", client: Optional[AsyncOpenAI] = None):
        self.api_key = api_key
        self.model = model
        self._client = client

    @classmethod
    def from_settings(cls, settings: Settings) -> "GeminiChat":
        return cls(api_key=settings.gemini_api_key, model=settings.gemini_model)

    @property
    def configured(self) -> bool:
        return self._client is not None or bool(self.api_key)

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = get_async_openai_compatible_client("gemini", api_key=self.api_key)
        return self._client

    # Raises on any provider failure; callers decide whether to fall back
    async def complete(self, prompt: str, *, temperature: float = 0.7, max_tokens: int = 1000) -> AIReply:
        if not self.configured:
            raise RuntimeError("GEMINI_API_KEY is not configured.")
        started = time.monotonic()
        resp = await self._get_client().chat.completions.create(
            model=self.model,
            messages=[{"role": "user", "content": prompt}],
            temperature=temperature,
            max_tokens=max_tokens,
        )
        text = (resp.choices[0].message.content or "").strip() if resp.choices else ""
        if not text:
            raise RuntimeError("Empty completion from Gemini")
        elapsed_ms = int((time.monotonic() - started) * 1000)
        return AIReply(content=text, token_count=estimate_tokens(text), processing_time=elapsed_ms, model=self.model)

    # Never raises: any failure or missing key yields the mock reply
    async def complete_or_mock(self, prompt: str, **kwargs) -> AIReply:
        if not self.configured:
            return mock_reply(prompt)
        try:
            return await self.complete(prompt, **kwargs)
        except Exception as e:
            logger.warning("chat.ai.fallback model=%s error=%s", self.model, e)
            return mock_reply(prompt)


# Process-wide adapter for request handlers; tests swap it via dependency overrides
@lru_cache(maxsize=1)
def get_gemini_chat() -> GeminiChat:
    return GeminiChat.from_settings(get_settings())
