from __future__ import annotations

from typing import Any, Mapping, Sequence

from ..streaming import StreamSchema
from ..types import ModelConfig
from .base import ProviderCall, map_messages

OPENAI_DEFAULT_BASE_URL = "https://api.openai.com/v1"
OPENROUTER_DEFAULT_BASE_URL = "https://openrouter.ai/api/v1"


def _chat_completions_url(base_url: str) -> str:
    return f"{base_url.strip().rstrip('/')}/chat/completions"


def build_openai_call(
    config: ModelConfig,
    messages: Sequence[Mapping[str, Any]],
    *,
    base_url: str,
    stream: bool,
    max_tokens: int | None = None,
    extra_headers: Mapping[str, str] | None = None,
    plugins: list[dict[str, str]] | None = None,
) -> ProviderCall:
    headers: dict[str, str] = {
        "Content-Type": "application/json",
        "Authorization": f"Bearer {config.api_key}",
    }
    if extra_headers:
        headers.update(extra_headers)
    payload: dict[str, Any] = {
        "model": config.model_id,
        "messages": map_messages(messages),
        "stream": stream,
    }
    if max_tokens is not None:
        payload["max_tokens"] = max_tokens
    if plugins:
        payload["plugins"] = [dict(plugin) for plugin in plugins]
    return ProviderCall(
        provider=config.provider,
        model_id=config.model_id,
        url=_chat_completions_url(base_url),
        headers=headers,
        payload=payload,
        schema=StreamSchema.OPENAI_CHAT,
    )


def build_openrouter_call(
    config: ModelConfig,
    messages: Sequence[Mapping[str, Any]],
    *,
    referer: str,
    title: str,
    stream: bool,
    max_tokens: int | None = None,
    plugins: list[dict[str, str]] | None = None,
) -> ProviderCall:
    # model ids are forwarded verbatim; OpenRouter decides whether they exist
    return build_openai_call(
        config,
        messages,
        base_url=config.base_url or OPENROUTER_DEFAULT_BASE_URL,
        stream=stream,
        max_tokens=max_tokens,
        extra_headers={"HTTP-Referer": referer, "X-Title": title},
        plugins=plugins,
    )


def parse_chat_completion(
    data: Mapping[str, Any], fallback_model: str
) -> tuple[str, str | None]:
    model = data.get("model")
    content: str | None = None
    choices = data.get("choices")
    if isinstance(choices, list) and choices and isinstance(choices[0], dict):
        message = choices[0].get("message")
        if isinstance(message, dict) and isinstance(message.get("content"), str):
            content = message["content"]
    return (model if isinstance(model, str) and model else fallback_model), content
