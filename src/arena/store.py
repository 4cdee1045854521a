"""Read-only, file-backed model configuration store.

Configs live in ``models.toml`` grouped by owning scope::

    [anonymous.gpt4o]
    name = "GPT-4o"
    provider = "openai"
    model_id = "gpt-4o"
    api_key_env = "OPENAI_API_KEY"

``api_key_env`` is read from the environment on every lookup so keys can be
rotated without touching the file. The store reloads itself when the file's
mtime changes; it never writes.
"""

from __future__ import annotations

import logging
import os
import threading
from typing import Any, Dict, Optional

try:
    import tomllib
except ModuleNotFoundError:  # pragma: no cover - python < 3.11
    import tomli as tomllib

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .config import format_validation_error
from .types import ModelConfig, Provider

logger = logging.getLogger(__name__)


class _StoredModel(BaseModel):
    name: str = ""
    provider: Provider
    api_key: Optional[str] = Field(default=None, repr=False)
    api_key_env: Optional[str] = None
    base_url: Optional[str] = None
    model_id: str = Field(min_length=1)

    model_config = ConfigDict(extra="forbid", protected_namespaces=())


def _parse_models(data: dict[str, Any]) -> Dict[str, Dict[str, _StoredModel]]:
    scopes: Dict[str, Dict[str, _StoredModel]] = {}
    problems: list[str] = []
    for scope_id, entries in data.items():
        if not isinstance(entries, dict):
            problems.append(f"{scope_id}: scope must be a table of model configs")
            continue
        parsed: Dict[str, _StoredModel] = {}
        for config_id, raw in entries.items():
            if not isinstance(raw, dict):
                problems.append(f"{scope_id} -> {config_id}: model config must be a table")
                continue
            try:
                parsed[config_id] = _StoredModel.model_validate(raw)
            except ValidationError as exc:
                problems.append(f"{scope_id} -> {config_id} -> {format_validation_error(exc)}")
        scopes[scope_id] = parsed
    if problems:
        raise ValueError("; ".join(problems))
    return scopes


class ModelConfigStore:
    def __init__(self, path: str) -> None:
        self.path = path
        self._lock = threading.Lock()
        self._scopes: Dict[str, Dict[str, _StoredModel]] = {}
        self._mtime: float | None = None
        self.load()

    def _current_mtime(self) -> float | None:
        try:
            return os.stat(self.path).st_mtime
        except FileNotFoundError:
            return None

    def load(self) -> None:
        mtime = self._current_mtime()
        if mtime is None:
            scopes: Dict[str, Dict[str, _StoredModel]] = {}
        else:
            with open(self.path, "rb") as f:
                data = tomllib.load(f)
            try:
                scopes = _parse_models(data)
            except ValueError as exc:
                raise ValueError(f"{os.path.basename(self.path)}: {exc}") from exc
        with self._lock:
            self._scopes = scopes
            self._mtime = mtime

    def refresh(self) -> bool:
        mtime = self._current_mtime()
        if mtime == self._mtime:
            return False
        try:
            self.load()
        except (OSError, ValueError, tomllib.TOMLDecodeError) as exc:
            logger.error("model store reload failed path=%s detail=%s", self.path, exc)
            return False
        logger.info("model store reloaded path=%s", self.path)
        return True

    @staticmethod
    def _materialize(config_id: str, entry: _StoredModel) -> ModelConfig:
        api_key = entry.api_key or ""
        if not api_key and entry.api_key_env:
            api_key = os.environ.get(entry.api_key_env, "").strip()
        return ModelConfig(
            id=config_id,
            name=entry.name or config_id,
            provider=entry.provider,
            api_key=api_key,
            base_url=entry.base_url or None,
            model_id=entry.model_id,
        )

    def resolve(self, scope_id: str, config_id: str) -> ModelConfig | None:
        self.refresh()
        with self._lock:
            entry = self._scopes.get(scope_id, {}).get(config_id)
        if entry is None:
            return None
        return self._materialize(config_id, entry)

    def list_models(self, scope_id: str) -> list[ModelConfig]:
        self.refresh()
        with self._lock:
            entries = sorted(self._scopes.get(scope_id, {}).items())
        return [self._materialize(config_id, entry) for config_id, entry in entries]

    def summary(self) -> dict[str, Any]:
        with self._lock:
            return {
                "path": os.path.basename(self.path),
                "scopes": len(self._scopes),
                "models": sum(len(entries) for entries in self._scopes.values()),
                "loaded": self._mtime is not None,
            }
