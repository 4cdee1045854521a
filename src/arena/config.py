import os
from dataclasses import dataclass

import yaml
from pydantic import BaseModel, ConfigDict, Field, PositiveFloat, PositiveInt, ValidationError

SETTINGS_FILE = "arena.yaml"
MODELS_FILE = "models.toml"


def parse_env_list(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


def format_validation_error(exc: ValidationError) -> str:
    problems = []
    for error in exc.errors():
        location = " -> ".join(str(item) for item in error.get("loc", ())) or "<root>"
        problems.append(f"{location}: {error.get('msg', 'invalid value')}")
    return "; ".join(problems)


@dataclass(frozen=True)
class ArenaSettings:
    app_title: str = "Model Arena"
    default_referer: str = "http://localhost:3000"
    chat_max_tokens: int = 4096
    probe_max_tokens: int = 50
    probe_prompt: str = "Hello"
    request_timeout_s: float = 60.0
    anthropic_version: str = "2023-06-01"


class _SettingsModel(BaseModel):
    app_title: str = Field(default="Model Arena", min_length=1)
    default_referer: str = Field(default="http://localhost:3000", min_length=1)
    chat_max_tokens: PositiveInt = Field(default=4096)
    probe_max_tokens: PositiveInt = Field(default=50)
    probe_prompt: str = Field(default="Hello", min_length=1)
    request_timeout_s: PositiveFloat = Field(default=60.0)
    anthropic_version: str = Field(default="2023-06-01", min_length=1)

    model_config = ConfigDict(extra="forbid")


def load_settings(config_dir: str) -> ArenaSettings:
    """Read ``arena.yaml`` from *config_dir*; a missing file means defaults."""
    path = os.path.join(config_dir, SETTINGS_FILE)
    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    except FileNotFoundError:
        raw = {}
    try:
        parsed = _SettingsModel.model_validate(raw)
    except ValidationError as exc:
        raise ValueError(f"{SETTINGS_FILE}: {format_validation_error(exc)}") from exc
    return ArenaSettings(
        app_title=parsed.app_title,
        default_referer=parsed.default_referer,
        chat_max_tokens=int(parsed.chat_max_tokens),
        probe_max_tokens=int(parsed.probe_max_tokens),
        probe_prompt=parsed.probe_prompt,
        request_timeout_s=float(parsed.request_timeout_s),
        anthropic_version=parsed.anthropic_version,
    )
