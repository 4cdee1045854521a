from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping, Sequence, Union

from .config import ArenaSettings
from .errors import ArenaError, ConfigValidationError, attach_guidance, translate_error
from .fallback import run_search_chain
from .providers import (
    INVALID_PROVIDER,
    MISSING_CUSTOM_BASE_URL,
    complete,
    open_stream,
    prepare_call,
)
from .store import ModelConfigStore
from .streaming import TokenStream
from .types import ModelConfig, ModelConfigOverride, ProbeResult, Provider

logger = logging.getLogger(__name__)

MISSING_MODEL_CONFIGURATION = "Missing model configuration"

ConfigCandidate = Union[ModelConfig, ModelConfigOverride]


def effective_config(
    inline: ModelConfigOverride | None, stored: ModelConfig | None
) -> ConfigCandidate | None:
    """The stored config when the lookup found one, else the inline config as sent."""
    if stored is not None:
        return stored
    return inline


def validate_config(candidate: ConfigCandidate | None) -> ModelConfig:
    if candidate is None or not candidate.api_key or not candidate.model_id:
        raise ConfigValidationError(MISSING_MODEL_CONFIGURATION)
    provider = Provider.parse(candidate.provider)
    if provider is None:
        raise ConfigValidationError(INVALID_PROVIDER)
    if provider is Provider.CUSTOM and not candidate.base_url:
        raise ConfigValidationError(MISSING_CUSTOM_BASE_URL)
    if isinstance(candidate, ModelConfig):
        return candidate
    return ModelConfig(
        id=candidate.id or "",
        name=candidate.name or "",
        provider=provider,
        api_key=candidate.api_key,
        base_url=candidate.base_url or None,
        model_id=candidate.model_id,
    )


@dataclass(slots=True)
class ChatDispatch:
    stream: TokenStream
    config: ModelConfig
    attempts: int = 1
    search_tier: str | None = None


class Dispatcher:
    def __init__(self, store: ModelConfigStore, settings: ArenaSettings) -> None:
        self.store = store
        self.settings = settings

    def resolve_config(
        self, inline: ModelConfigOverride | None, scope_id: str
    ) -> ModelConfig:
        stored: ModelConfig | None = None
        if inline is not None and inline.id:
            stored = self.store.resolve(scope_id, inline.id)
            if stored is None:
                logger.debug("stored config not found scope=%s id=%s", scope_id, inline.id)
        return validate_config(effective_config(inline, stored))

    async def open_chat(
        self,
        config: ModelConfig,
        messages: Sequence[Mapping[str, Any]],
        *,
        enable_web_search: bool = False,
        referer: str | None = None,
    ) -> ChatDispatch:
        timeout = self.settings.request_timeout_s
        try:
            if enable_web_search and config.provider is Provider.OPENROUTER:

                async def attempt(plugins: list[dict[str, str]] | None) -> TokenStream:
                    call = prepare_call(
                        config,
                        messages,
                        settings=self.settings,
                        stream=True,
                        referer=referer,
                        plugins=plugins,
                    )
                    return await open_stream(call, timeout=timeout)

                outcome = await run_search_chain(attempt, model_id=config.model_id)
                return ChatDispatch(
                    stream=outcome.value,
                    config=config,
                    attempts=outcome.attempts,
                    search_tier=outcome.tier.value,
                )
            call = prepare_call(
                config,
                messages,
                settings=self.settings,
                stream=True,
                referer=referer,
            )
            stream = await open_stream(call, timeout=timeout)
        except Exception as exc:
            raise self._translate(exc, config) from exc
        return ChatDispatch(stream=stream, config=config)

    async def probe(self, config: ModelConfig, *, referer: str | None = None) -> ProbeResult:
        call = prepare_call(
            config,
            [{"role": "user", "content": self.settings.probe_prompt}],
            settings=self.settings,
            stream=False,
            max_tokens=self.settings.probe_max_tokens,
            referer=referer,
        )
        try:
            return await complete(call, timeout=self.settings.request_timeout_s)
        except Exception as exc:
            raise self._translate(exc, config) from exc

    @staticmethod
    def _translate(exc: Exception, config: ModelConfig) -> ArenaError:
        return attach_guidance(translate_error(exc), config.provider, config.model_id)
