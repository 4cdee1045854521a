from __future__ import annotations

from enum import Enum
from typing import Any

import httpx

from .types import Provider

AUTH_HINT = (
    "Please check your API key in the settings. "
    "Make sure it is correct and has not expired."
)
INVALID_API_KEY_CODE = "invalid_api_key"
OPENROUTER_MODELS_URL = "https://openrouter.ai/models"


class ErrorKind(str, Enum):
    VALIDATION = "ValidationError"
    AUTHENTICATION = "AuthenticationError"
    CAPABILITY = "CapabilityError"
    UPSTREAM = "UpstreamError"
    TRANSPORT = "TransportError"


class ArenaError(Exception):
    kind: ErrorKind = ErrorKind.UPSTREAM
    default_status: int = 500

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        code: str | None = None,
        error_type: str | None = None,
        details: Any = None,
        hint: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code if status_code is not None else self.default_status
        self.code = code
        self.error_type = error_type
        self.details = details
        self.hint = hint
        self.attempts = 1


class ConfigValidationError(ArenaError):
    """Raised for problems detected locally, before any network call."""

    kind = ErrorKind.VALIDATION
    default_status = 400


class AuthenticationError(ArenaError):
    kind = ErrorKind.AUTHENTICATION
    default_status = 401


class UpstreamError(ArenaError):
    kind = ErrorKind.UPSTREAM


class CapabilityError(UpstreamError):
    """The upstream model lacks a requested capability (e.g. native web search)."""

    kind = ErrorKind.CAPABILITY


class TransportError(ArenaError):
    kind = ErrorKind.TRANSPORT


def _response_payload(response: httpx.Response) -> Any:
    try:
        return response.json()
    except (ValueError, httpx.ResponseNotRead):
        return None


def _response_text(response: httpx.Response) -> str | None:
    try:
        return response.text or None
    except httpx.ResponseNotRead:
        return None


def http_status_error_details(
    exc: httpx.HTTPStatusError,
) -> tuple[int | None, str, str | None, str | None, Any]:
    """Return ``(status, message, code, error_type, details)`` for an upstream error.

    OpenAI, OpenRouter and Anthropic all wrap failures in an ``{"error": {...}}``
    envelope; anything else falls back to the body text or reason phrase.
    """
    status: int | None = None
    message: str | None = None
    code: str | None = None
    error_type: str | None = None
    details: Any = None
    response = exc.response
    if response is not None:
        status = response.status_code
        payload = _response_payload(response)
        if isinstance(payload, dict):
            details = payload
            error_field = payload.get("error")
            if isinstance(error_field, dict):
                details = error_field
                error_message = error_field.get("message")
                if isinstance(error_message, str) and error_message:
                    message = error_message
                raw_code = error_field.get("code")
                if isinstance(raw_code, (str, int)) and not isinstance(raw_code, bool):
                    code = str(raw_code)
                raw_type = error_field.get("type")
                if isinstance(raw_type, str) and raw_type:
                    error_type = raw_type
            elif isinstance(error_field, str) and error_field:
                message = error_field
            if message is None:
                nested_message = payload.get("message")
                if isinstance(nested_message, str) and nested_message:
                    message = nested_message
        if message is None:
            text = _response_text(response)
            if text:
                message = text
                details = text
        if message is None:
            reason = response.reason_phrase
            if reason:
                message = reason
    if message is None:
        message = str(exc)
    return status, message, code, error_type, details


def is_native_search_unsupported(status: int | None, message: str | None) -> bool:
    if status != 404 or not message:
        return False
    return (
        "native web search" in message
        or "No endpoints found that support native web search" in message
    )


def translate_error(exc: BaseException) -> ArenaError:
    """Map any dispatch failure onto the error taxonomy."""
    if isinstance(exc, ArenaError):
        return exc
    if isinstance(exc, httpx.HTTPStatusError):
        status, message, code, error_type, details = http_status_error_details(exc)
        if status == 401 or code == INVALID_API_KEY_CODE:
            return AuthenticationError(
                message or "Invalid API key",
                code=INVALID_API_KEY_CODE,
                error_type=error_type,
                details=details,
                hint=AUTH_HINT,
            )
        error_cls = (
            CapabilityError if is_native_search_unsupported(status, message) else UpstreamError
        )
        return error_cls(
            message,
            status_code=status,
            code=code,
            error_type=error_type,
            details=details,
        )
    if isinstance(exc, httpx.TransportError):
        return TransportError(
            "Failed to reach the model provider",
            error_type=type(exc).__name__,
        )
    return UpstreamError("Internal Server Error", error_type=type(exc).__name__)


def openrouter_guidance(status: int | None, message: str, model_id: str) -> str:
    """Best-effort human guidance for an OpenRouter failure, keyed on its wording."""
    lowered = message.lower()
    if "not available" in lowered or "not found" in lowered or status == 404:
        return (
            f'Model "{model_id}" is not available on OpenRouter or does not exist.\n\n'
            "Possible causes:\n"
            "1. The model name is misspelled\n"
            "2. The model was removed or is temporarily unavailable\n"
            "3. The model requires special access\n\n"
            f"Search {OPENROUTER_MODELS_URL} to confirm the model name."
        )
    if (
        status == 401
        or "api key" in lowered
        or "unauthorized" in lowered
    ):
        return (
            "API key verification failed. Please confirm:\n"
            "1. The API key is correct\n"
            f'2. The key has access to model "{model_id}"\n'
            "3. Some models require a specific subscription tier"
        )
    if (
        status == 400
        or "provider returned error" in lowered
        or "bad request" in lowered
    ):
        return (
            f"Request failed: {message}\n\n"
            f"Model ID: {model_id}\n\n"
            "The model name may be wrong, the model may be temporarily unavailable, "
            f"or it may need special access. See {OPENROUTER_MODELS_URL}."
        )
    if "rate limit" in lowered or status == 429:
        return "Too many requests, please try again later."
    return (
        f"OpenRouter returned an error: {message}\n\n"
        f"Model ID: {model_id}\n"
        f"Status code: {status if status is not None else 'unknown'}\n\n"
        f"Check the model name or browse {OPENROUTER_MODELS_URL}."
    )


def attach_guidance(err: ArenaError, provider: Provider | None, model_id: str) -> ArenaError:
    if provider is Provider.OPENROUTER and err.hint is None and err.kind in (
        ErrorKind.UPSTREAM,
        ErrorKind.CAPABILITY,
    ):
        err.hint = openrouter_guidance(err.status_code, err.message, model_id)
    return err


def make_error_body(err: ArenaError) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "error": err.kind.value,
        "message": err.message,
    }
    if err.code is not None:
        payload["code"] = err.code
    if err.hint is not None:
        payload["hint"] = err.hint
    if err.details is not None:
        payload["details"] = err.details
    return payload
