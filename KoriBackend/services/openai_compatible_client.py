from typing import Dict, Optional

from openai import AsyncOpenAI


_PROVIDER_BASE_URLS: Dict[str, Optional[str]] = {
    "openai": None,
    "gemini": "https://generativelanguage.googleapis.com/v1beta/openai/",
}


# Create an async OpenAI-compatible client for the given provider
def get_async_openai_compatible_client(provider: Optional[str], *, api_key: Optional[str], timeout: float = 30.0) -> AsyncOpenAI:
    provider_l = (provider or "openai").strip().lower()
    if provider_l not in _PROVIDER_BASE_URLS:
        raise ValueError(f"Unsupported provider: {provider_l}")
    if not api_key:
        raise ValueError(f"Missing API key for provider '{provider_l}'.")

    kwargs = {"api_key": api_key, "timeout": timeout}
    base_url = _PROVIDER_BASE_URLS[provider_l]
    if base_url:
        kwargs["base_url"] = base_url
    return AsyncOpenAI(**kwargs)
