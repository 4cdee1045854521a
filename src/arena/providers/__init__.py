from __future__ import annotations

from contextlib import AsyncExitStack
from typing import Any, Mapping, Sequence

import httpx

from ..config import ArenaSettings
from ..errors import ConfigValidationError
from ..streaming import StreamSchema, TokenStream
from ..types import ModelConfig, ProbeResult, Provider
from .anthropic import ANTHROPIC_DEFAULT_BASE_URL, build_anthropic_call, parse_message, split_system
from .base import ProviderCall, map_messages
from .openai import (
    OPENAI_DEFAULT_BASE_URL,
    OPENROUTER_DEFAULT_BASE_URL,
    build_openai_call,
    build_openrouter_call,
    parse_chat_completion,
)

MISSING_CUSTOM_BASE_URL = "Missing baseUrl for custom provider"
INVALID_PROVIDER = "Invalid provider"


def derive_referer(headers: Mapping[str, str], default: str) -> str:
    origin = headers.get("origin") or headers.get("referer") or default
    referer_url = origin if origin.startswith("http") else f"http://{origin}"
    return headers.get("referer") or referer_url


def prepare_call(
    config: ModelConfig,
    messages: Sequence[Mapping[str, Any]],
    *,
    settings: ArenaSettings,
    stream: bool,
    max_tokens: int | None = None,
    referer: str | None = None,
    plugins: list[dict[str, str]] | None = None,
) -> ProviderCall:
    """Shape one upstream request for *config*; no I/O happens here."""
    provider = Provider.parse(config.provider)
    if provider is Provider.OPENAI:
        return build_openai_call(
            config,
            messages,
            base_url=config.base_url or OPENAI_DEFAULT_BASE_URL,
            stream=stream,
            max_tokens=max_tokens,
        )
    if provider is Provider.CUSTOM:
        if not config.base_url:
            raise ConfigValidationError(MISSING_CUSTOM_BASE_URL)
        return build_openai_call(
            config,
            messages,
            base_url=config.base_url,
            stream=stream,
            max_tokens=max_tokens,
        )
    if provider is Provider.ANTHROPIC:
        return build_anthropic_call(
            config,
            messages,
            max_tokens=max_tokens if max_tokens is not None else settings.chat_max_tokens,
            api_version=settings.anthropic_version,
            stream=stream,
        )
    if provider is Provider.OPENROUTER:
        return build_openrouter_call(
            config,
            messages,
            referer=referer or settings.default_referer,
            title=settings.app_title,
            stream=stream,
            max_tokens=max_tokens,
            plugins=plugins,
        )
    raise ConfigValidationError(INVALID_PROVIDER)


async def open_stream(call: ProviderCall, *, timeout: float) -> TokenStream:
    """Issue *call* and return its token stream.

    Upstream HTTP errors are raised here, before any token is handed out, so
    callers can still choose a different request or an error response.
    """
    stack = AsyncExitStack()
    try:
        client = await stack.enter_async_context(httpx.AsyncClient(timeout=timeout))
        response = await stack.enter_async_context(
            client.stream("POST", call.url, headers=call.headers, json=call.payload)
        )
        if response.is_error:
            await response.aread()
            response.raise_for_status()
    except BaseException:
        await stack.aclose()
        raise
    return TokenStream(call.schema, response.aiter_lines(), on_close=stack.aclose)


async def complete(call: ProviderCall, *, timeout: float) -> ProbeResult:
    async with httpx.AsyncClient(timeout=timeout) as client:
        r = await client.post(call.url, headers=call.headers, json=call.payload)
        r.raise_for_status()
        data = r.json()
    if not isinstance(data, dict):
        data = {}
    if call.schema is StreamSchema.ANTHROPIC_MESSAGES:
        model, content = parse_message(data, call.model_id)
    else:
        model, content = parse_chat_completion(data, call.model_id)
    return ProbeResult(status_code=r.status_code, model=model, content=content)


__all__ = [
    "ANTHROPIC_DEFAULT_BASE_URL",
    "INVALID_PROVIDER",
    "MISSING_CUSTOM_BASE_URL",
    "OPENAI_DEFAULT_BASE_URL",
    "OPENROUTER_DEFAULT_BASE_URL",
    "ProviderCall",
    "complete",
    "derive_referer",
    "map_messages",
    "open_stream",
    "prepare_call",
    "split_system",
]
