import sys
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from src.arena.config import ArenaSettings
from src.arena.errors import ConfigValidationError
from src.arena.providers import (
    MISSING_CUSTOM_BASE_URL,
    derive_referer,
    prepare_call,
)
from src.arena.providers.openai import parse_chat_completion
from src.arena.streaming import StreamSchema
from src.arena.types import ModelConfig, Provider

SETTINGS = ArenaSettings()
MESSAGES = [
    {"role": "system", "content": "be brief"},
    {"role": "user", "content": "Hi"},
]


def make_config(provider: str, **overrides: str) -> ModelConfig:
    values = {"provider": provider, "api_key": "sk-test", "model_id": "gpt-4o"}
    values.update(overrides)
    return ModelConfig(**values)


def test_openai_call_uses_default_base_url_and_bearer_auth() -> None:
    call = prepare_call(make_config("openai"), MESSAGES, settings=SETTINGS, stream=True)

    assert call.url == "https://api.openai.com/v1/chat/completions"
    assert call.headers["Authorization"] == "Bearer sk-test"
    assert call.payload == {"model": "gpt-4o", "messages": MESSAGES, "stream": True}
    assert call.schema is StreamSchema.OPENAI_CHAT
    assert call.provider is Provider.OPENAI


def test_openai_call_honours_base_url_override() -> None:
    config = make_config("openai", base_url="https://proxy.example/v1/")
    call = prepare_call(config, MESSAGES, settings=SETTINGS, stream=False, max_tokens=50)

    assert call.url == "https://proxy.example/v1/chat/completions"
    assert call.payload["max_tokens"] == 50
    assert call.payload["stream"] is False


def test_openai_messages_keep_only_role_and_content() -> None:
    messages = [{"role": "user", "content": "Hi", "id": "m-1"}]
    call = prepare_call(make_config("openai"), messages, settings=SETTINGS, stream=True)

    assert call.payload["messages"] == [{"role": "user", "content": "Hi"}]


def test_custom_call_requires_base_url() -> None:
    with pytest.raises(ConfigValidationError) as excinfo:
        prepare_call(make_config("custom"), MESSAGES, settings=SETTINGS, stream=True)

    assert excinfo.value.status_code == 400
    assert excinfo.value.message == MISSING_CUSTOM_BASE_URL


def test_custom_call_targets_its_base_url() -> None:
    config = make_config("custom", base_url="http://localhost:11434/v1", model_id="llama3")
    call = prepare_call(config, MESSAGES, settings=SETTINGS, stream=True)

    assert call.url == "http://localhost:11434/v1/chat/completions"
    assert call.payload["model"] == "llama3"
    assert call.schema is StreamSchema.OPENAI_CHAT


def test_openrouter_call_sets_attribution_headers_and_plugins() -> None:
    config = make_config("openrouter", model_id="openai/gpt-4o")
    call = prepare_call(
        config,
        MESSAGES,
        settings=SETTINGS,
        stream=True,
        referer="https://arena.example/chat",
        plugins=[{"id": "web", "engine": "native"}],
    )

    assert call.url == "https://openrouter.ai/api/v1/chat/completions"
    assert call.headers["HTTP-Referer"] == "https://arena.example/chat"
    assert call.headers["X-Title"] == "Model Arena"
    assert call.payload["model"] == "openai/gpt-4o"
    assert call.payload["plugins"] == [{"id": "web", "engine": "native"}]


def test_openrouter_call_without_plugins_omits_field() -> None:
    config = make_config("openrouter", model_id="not-a-real/model")
    call = prepare_call(config, MESSAGES, settings=SETTINGS, stream=True)

    assert "plugins" not in call.payload
    assert call.headers["HTTP-Referer"] == SETTINGS.default_referer
    assert call.payload["model"] == "not-a-real/model"


@pytest.mark.parametrize(
    ("headers", "expected"),
    [
        ({}, "http://localhost:3000"),
        ({"origin": "arena.example"}, "http://arena.example"),
        ({"origin": "https://arena.example"}, "https://arena.example"),
        (
            {"origin": "https://arena.example", "referer": "https://arena.example/page"},
            "https://arena.example/page",
        ),
    ],
)
def test_derive_referer(headers: dict[str, str], expected: str) -> None:
    assert derive_referer(headers, "http://localhost:3000") == expected


def test_parse_chat_completion_prefers_reported_model() -> None:
    data = {
        "model": "gpt-4o-2024-08-06",
        "choices": [{"index": 0, "message": {"role": "assistant", "content": "Hello!"}}],
    }
    assert parse_chat_completion(data, "gpt-4o") == ("gpt-4o-2024-08-06", "Hello!")
    assert parse_chat_completion({}, "gpt-4o") == ("gpt-4o", None)
