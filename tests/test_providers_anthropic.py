import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from src.arena.config import ArenaSettings
from src.arena.providers import prepare_call, split_system
from src.arena.providers.anthropic import parse_message
from src.arena.streaming import StreamSchema
from src.arena.types import ModelConfig

SETTINGS = ArenaSettings()


def make_config(**overrides: str) -> ModelConfig:
    values = {
        "provider": "anthropic",
        "api_key": "sk-ant",
        "model_id": "claude-3-opus-20240229",
    }
    values.update(overrides)
    return ModelConfig(**values)


def test_system_message_is_lifted_out_of_the_conversation() -> None:
    system, conversation = split_system(
        [{"role": "system", "content": "S"}, {"role": "user", "content": "U"}]
    )

    assert system == "S"
    assert conversation == [{"role": "user", "content": "U"}]


def test_only_first_system_message_is_honoured() -> None:
    system, conversation = split_system(
        [
            {"role": "system", "content": "first"},
            {"role": "user", "content": "U"},
            {"role": "system", "content": "second"},
            {"role": "assistant", "content": "A"},
        ]
    )

    assert system == "first"
    assert conversation == [
        {"role": "user", "content": "U"},
        {"role": "assistant", "content": "A"},
    ]


def test_anthropic_chat_call_shape() -> None:
    call = prepare_call(
        make_config(),
        [{"role": "system", "content": "S"}, {"role": "user", "content": "U"}],
        settings=SETTINGS,
        stream=True,
    )

    assert call.url == "https://api.anthropic.com/v1/messages"
    assert call.headers["x-api-key"] == "sk-ant"
    assert call.headers["anthropic-version"] == "2023-06-01"
    assert "Authorization" not in call.headers
    assert call.payload == {
        "model": "claude-3-opus-20240229",
        "max_tokens": 4096,
        "messages": [{"role": "user", "content": "U"}],
        "stream": True,
        "system": "S",
    }
    assert call.schema is StreamSchema.ANTHROPIC_MESSAGES


def test_anthropic_call_without_system_omits_field() -> None:
    call = prepare_call(
        make_config(base_url="https://anthropic.proxy.example/"),
        [{"role": "user", "content": "U"}],
        settings=SETTINGS,
        stream=False,
        max_tokens=50,
    )

    assert call.url == "https://anthropic.proxy.example/v1/messages"
    assert "system" not in call.payload
    assert call.payload["max_tokens"] == 50


def test_parse_message_joins_text_blocks() -> None:
    data = {
        "model": "claude-3-opus-20240229",
        "content": [
            {"type": "text", "text": "Hel"},
            {"type": "tool_use", "id": "t1"},
            {"type": "text", "text": "lo"},
        ],
    }
    assert parse_message(data, "fallback") == ("claude-3-opus-20240229", "Hello")
    assert parse_message({"content": []}, "fallback") == ("fallback", None)
