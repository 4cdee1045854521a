"""Provider-agnostic token stream.

Upstream APIs speak two SSE dialects: OpenAI-style ``chat.completion.chunk``
frames (OpenAI, OpenRouter and custom endpoints) and Anthropic ``messages``
events. Both are reduced to a sequence of :class:`TokenEvent` fragments ending
in exactly one :class:`EndEvent` or :class:`ErrorEvent`. Token text is passed
through untouched and in arrival order.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any, Union

import httpx

logger = logging.getLogger(__name__)


class StreamSchema(str, Enum):
    OPENAI_CHAT = "openai_chat"
    ANTHROPIC_MESSAGES = "anthropic_messages"


@dataclass(slots=True)
class TokenEvent:
    text: str


@dataclass(slots=True)
class EndEvent:
    finish_reason: str | None = None


@dataclass(slots=True)
class ErrorEvent:
    """The upstream failed after the response had started streaming."""

    message: str
    error_type: str | None = None
    details: Any = None


StreamEvent = Union[TokenEvent, EndEvent, ErrorEvent]


async def iter_sse_frames(lines: AsyncIterator[str]) -> AsyncIterator[tuple[str | None, str]]:
    """Group SSE lines into ``(event_name, data)`` frames."""
    data_lines: list[str] = []
    event_name: str | None = None
    async for raw_line in lines:
        if raw_line is None:
            continue
        line = raw_line.strip("\r")
        if line == "":
            if not data_lines:
                event_name = None
                continue
            data_text = "\n".join(data_lines)
            data_lines.clear()
            yield event_name, data_text
            event_name = None
            continue
        if line.startswith(":"):
            continue
        if line.startswith("event:"):
            event_name = line[6:].strip() or None
            continue
        if line.startswith("data:"):
            data_lines.append(line[5:].lstrip())
            continue
    if data_lines:
        yield event_name, "\n".join(data_lines)


def _load_payload(data_text: str) -> dict[str, Any] | None:
    try:
        payload = json.loads(data_text)
    except json.JSONDecodeError:
        return None
    return payload if isinstance(payload, dict) else None


def _error_event(error_field: Any) -> ErrorEvent:
    if isinstance(error_field, dict):
        message = error_field.get("message")
        error_type = error_field.get("type")
        return ErrorEvent(
            message=message if isinstance(message, str) and message else "upstream stream error",
            error_type=error_type if isinstance(error_type, str) else None,
            details=error_field,
        )
    if isinstance(error_field, str) and error_field:
        return ErrorEvent(message=error_field, details=error_field)
    return ErrorEvent(message="upstream stream error", details=error_field)


async def _normalize_openai(
    frames: AsyncIterator[tuple[str | None, str]],
) -> AsyncIterator[StreamEvent]:
    finish_reason: str | None = None
    async for _event_name, data_text in frames:
        if data_text == "[DONE]":
            yield EndEvent(finish_reason)
            return
        payload = _load_payload(data_text)
        if payload is None:
            continue
        if payload.get("error") is not None:
            yield _error_event(payload["error"])
            return
        choices = payload.get("choices")
        if not isinstance(choices, list):
            continue
        for position, choice in enumerate(choices):
            if not isinstance(choice, dict):
                continue
            index = choice.get("index", position)
            if index not in (0, None):
                continue
            delta = choice.get("delta")
            if isinstance(delta, dict):
                content = delta.get("content")
                if isinstance(content, str) and content:
                    yield TokenEvent(content)
            finish = choice.get("finish_reason")
            if isinstance(finish, str) and finish:
                finish_reason = finish
    yield EndEvent(finish_reason)


async def _normalize_anthropic(
    frames: AsyncIterator[tuple[str | None, str]],
) -> AsyncIterator[StreamEvent]:
    stop_reason: str | None = None
    async for event_name, data_text in frames:
        payload = _load_payload(data_text)
        if payload is None:
            continue
        event_type = payload.get("type") or event_name
        if event_type == "content_block_delta":
            block_delta = payload.get("delta")
            if isinstance(block_delta, dict) and block_delta.get("type") == "text_delta":
                text_value = block_delta.get("text")
                if isinstance(text_value, str) and text_value:
                    yield TokenEvent(text_value)
            continue
        if event_type == "message_delta":
            delta_payload = payload.get("delta")
            if isinstance(delta_payload, dict):
                candidate = delta_payload.get("stop_reason")
                if isinstance(candidate, str):
                    stop_reason = candidate
            continue
        if event_type == "message_stop":
            yield EndEvent(stop_reason)
            return
        if event_type == "error":
            yield _error_event(payload.get("error"))
            return
    yield EndEvent(stop_reason)


def normalize_stream(
    schema: StreamSchema, lines: AsyncIterator[str]
) -> AsyncIterator[StreamEvent]:
    frames = iter_sse_frames(lines)
    if schema is StreamSchema.ANTHROPIC_MESSAGES:
        return _normalize_anthropic(frames)
    return _normalize_openai(frames)


class TokenStream:
    """An opened upstream stream; iterate :meth:`events` exactly once."""

    def __init__(
        self,
        schema: StreamSchema,
        lines: AsyncIterator[str],
        *,
        on_close: Callable[[], Awaitable[None]] | None = None,
    ) -> None:
        self.schema = schema
        self._lines = lines
        self._on_close = on_close
        self._closed = False

    async def events(self) -> AsyncIterator[StreamEvent]:
        try:
            async for event in normalize_stream(self.schema, self._lines):
                yield event
                if not isinstance(event, TokenEvent):
                    return
        except httpx.HTTPError as exc:
            logger.warning("upstream stream interrupted detail=%s", exc)
            yield ErrorEvent(
                message=str(exc) or "upstream stream interrupted",
                error_type=type(exc).__name__,
            )
        finally:
            await self.aclose()

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._on_close is not None:
            await self._on_close()
