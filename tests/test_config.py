import sys
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from src.arena.config import (
    ArenaSettings,
    load_settings,
    parse_env_list,
)


def test_missing_settings_file_uses_defaults(tmp_path: Path) -> None:
    settings = load_settings(str(tmp_path))

    assert settings == ArenaSettings()
    assert settings.chat_max_tokens == 4096
    assert settings.probe_max_tokens == 50
    assert settings.probe_prompt == "Hello"
    assert settings.app_title == "Model Arena"


def test_settings_file_overrides_selected_keys(tmp_path: Path) -> None:
    (tmp_path / "arena.yaml").write_text(
        "app_title: Arena Staging\nrequest_timeout_s: 5\n", encoding="utf-8"
    )

    settings = load_settings(str(tmp_path))

    assert settings.app_title == "Arena Staging"
    assert settings.request_timeout_s == 5.0
    assert settings.chat_max_tokens == 4096


def test_empty_settings_file_uses_defaults(tmp_path: Path) -> None:
    (tmp_path / "arena.yaml").write_text("", encoding="utf-8")

    assert load_settings(str(tmp_path)) == ArenaSettings()


def test_invalid_settings_report_location(tmp_path: Path) -> None:
    (tmp_path / "arena.yaml").write_text(
        "chat_max_tokens: -1\nunknown_key: 1\n", encoding="utf-8"
    )

    with pytest.raises(ValueError) as excinfo:
        load_settings(str(tmp_path))

    message = str(excinfo.value)
    assert message.startswith("arena.yaml: ")
    assert "chat_max_tokens" in message
    assert "unknown_key" in message


def test_parse_env_list() -> None:
    assert parse_env_list(" a, ,b ,c") == ["a", "b", "c"]
    assert parse_env_list("") == []
