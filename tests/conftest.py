"""Pytest configuration: project importability and a recording fake upstream."""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any, Callable

import httpx
import pytest

ROOT_DIR = Path(__file__).resolve().parents[1]
ROOT_STR = str(ROOT_DIR)
if ROOT_STR not in sys.path:
    sys.path.insert(0, ROOT_STR)

_REAL_ASYNC_CLIENT = httpx.AsyncClient

Handler = Callable[[httpx.Request], httpx.Response]


class FakeUpstream:
    """Records every outbound request and answers with *handler*."""

    def __init__(self, handler: Handler) -> None:
        self.handler = handler
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.handler(request)

    @property
    def payloads(self) -> list[dict[str, Any]]:
        return [json.loads(request.content) for request in self.requests]


@pytest.fixture
def fake_upstream(monkeypatch: pytest.MonkeyPatch) -> Callable[[Handler], FakeUpstream]:
    def install(handler: Handler) -> FakeUpstream:
        upstream = FakeUpstream(handler)
        transport = httpx.MockTransport(upstream)

        def client_factory(*args: Any, **kwargs: Any) -> httpx.AsyncClient:
            kwargs["transport"] = transport
            return _REAL_ASYNC_CLIENT(*args, **kwargs)

        monkeypatch.setattr(httpx, "AsyncClient", client_factory)
        return upstream

    return install
