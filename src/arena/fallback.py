"""OpenRouter web-search degradation chain.

Web search support differs per upstream model and cannot be known ahead of
time, so a search-enabled request walks a fixed ladder of request variants::

    NATIVE_ATTEMPT --404 "native web search" unsupported--> EXA_ATTEMPT
    NATIVE_ATTEMPT --any other failure--------------------> NO_PLUGIN_ATTEMPT
    EXA_ATTEMPT    --failure------------------------------> NO_PLUGIN_ATTEMPT
    NO_PLUGIN_ATTEMPT --failure---------------------------> FATAL
    any attempt    --success------------------------------> DONE

The ladder only ever removes capability and is capped at three attempts with
no delay between them.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from .errors import ArenaError, is_native_search_unsupported, translate_error

logger = logging.getLogger(__name__)

MAX_SEARCH_ATTEMPTS = 3
WEB_PLUGIN_ID = "web"


class ChainState(str, Enum):
    NATIVE_ATTEMPT = "native"
    EXA_ATTEMPT = "exa"
    NO_PLUGIN_ATTEMPT = "no_plugin"
    DONE = "done"
    FATAL = "fatal"

    @property
    def is_terminal(self) -> bool:
        return self in (ChainState.DONE, ChainState.FATAL)


_ENGINES: dict[ChainState, str] = {
    ChainState.NATIVE_ATTEMPT: "native",
    ChainState.EXA_ATTEMPT: "exa",
}


def plugins_for(state: ChainState) -> list[dict[str, str]] | None:
    engine = _ENGINES.get(state)
    if engine is None:
        return None
    return [{"id": WEB_PLUGIN_ID, "engine": engine}]


def next_state(state: ChainState, error: ArenaError | None) -> ChainState:
    if state.is_terminal:
        return state
    if error is None:
        return ChainState.DONE
    if state is ChainState.NATIVE_ATTEMPT:
        if is_native_search_unsupported(error.status_code, error.message):
            return ChainState.EXA_ATTEMPT
        return ChainState.NO_PLUGIN_ATTEMPT
    if state is ChainState.EXA_ATTEMPT:
        return ChainState.NO_PLUGIN_ATTEMPT
    return ChainState.FATAL


@dataclass(slots=True)
class SearchOutcome:
    value: Any
    tier: ChainState
    attempts: int

    @property
    def search_enabled(self) -> bool:
        return self.tier in _ENGINES


async def run_search_chain(
    attempt: Callable[[list[dict[str, str]] | None], Awaitable[Any]],
    *,
    model_id: str,
) -> SearchOutcome:
    """Call *attempt* with each tier's plugin list until one succeeds.

    Raises the last translated error once every tier has failed.
    """
    state = ChainState.NATIVE_ATTEMPT
    attempts = 0
    last_error: ArenaError | None = None
    logger.info("web search enabled model=%s engine=%s", model_id, _ENGINES[state])
    while not state.is_terminal and attempts < MAX_SEARCH_ATTEMPTS:
        attempts += 1
        plugins = plugins_for(state)
        try:
            value = await attempt(plugins)
        except Exception as exc:
            last_error = translate_error(exc)
            following = next_state(state, last_error)
            logger.warning(
                "web search attempt failed model=%s engine=%s status=%s next=%s detail=%s",
                model_id,
                _ENGINES.get(state, "none"),
                last_error.status_code,
                following.value,
                last_error.message,
            )
            state = following
            continue
        if attempts > 1:
            logger.info(
                "web search fallback succeeded model=%s engine=%s attempts=%d",
                model_id,
                _ENGINES.get(state, "none"),
                attempts,
            )
        return SearchOutcome(value=value, tier=state, attempts=attempts)
    if last_error is None:
        raise RuntimeError("web search chain made no attempts")
    logger.error(
        "web search chain exhausted model=%s attempts=%d detail=%s",
        model_id,
        attempts,
        last_error.message,
    )
    last_error.attempts = attempts
    raise last_error
