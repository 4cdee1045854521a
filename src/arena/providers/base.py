from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Sequence

from ..streaming import StreamSchema
from ..types import Provider


@dataclass(slots=True)
class ProviderCall:
    """One fully shaped upstream request."""

    provider: Provider
    model_id: str
    url: str
    headers: dict[str, str] = field(repr=False)
    payload: dict[str, Any]
    schema: StreamSchema


def map_messages(messages: Sequence[Mapping[str, Any]]) -> list[dict[str, Any]]:
    return [{"role": message["role"], "content": message["content"]} for message in messages]
