from __future__ import annotations

from typing import Any, Mapping, Sequence

from ..streaming import StreamSchema
from ..types import ModelConfig
from .base import ProviderCall, map_messages

ANTHROPIC_DEFAULT_BASE_URL = "https://api.anthropic.com"


def split_system(
    messages: Sequence[Mapping[str, Any]],
) -> tuple[str | None, list[dict[str, Any]]]:
    """Separate the first system prompt from the conversation.

    Later system messages are dropped: the messages API accepts a single
    top-level ``system`` value and no ``system`` role inside ``messages``.
    """
    system: str | None = None
    conversation: list[Mapping[str, Any]] = []
    for message in messages:
        if message.get("role") == "system":
            if system is None:
                system = message.get("content")
            continue
        conversation.append(message)
    return system, map_messages(conversation)


def build_anthropic_call(
    config: ModelConfig,
    messages: Sequence[Mapping[str, Any]],
    *,
    max_tokens: int,
    api_version: str,
    stream: bool,
) -> ProviderCall:
    base = (config.base_url or ANTHROPIC_DEFAULT_BASE_URL).strip().rstrip("/")
    headers: dict[str, str] = {
        "anthropic-version": api_version,
        "Content-Type": "application/json",
        "x-api-key": config.api_key,
    }
    system, conversation = split_system(messages)
    payload: dict[str, Any] = {
        "model": config.model_id,
        "max_tokens": max_tokens,
        "messages": conversation,
        "stream": stream,
    }
    if system is not None:
        payload["system"] = system
    return ProviderCall(
        provider=config.provider,
        model_id=config.model_id,
        url=f"{base}/v1/messages",
        headers=headers,
        payload=payload,
        schema=StreamSchema.ANTHROPIC_MESSAGES,
    )


def parse_message(data: Mapping[str, Any], fallback_model: str) -> tuple[str, str | None]:
    model = data.get("model")
    text_parts: list[str] = []
    for block in data.get("content") or []:
        if isinstance(block, dict) and block.get("type") == "text":
            text_value = block.get("text")
            if isinstance(text_value, str):
                text_parts.append(text_value)
    content = "".join(text_parts) if text_parts else None
    return (model if isinstance(model, str) and model else fallback_model), content
