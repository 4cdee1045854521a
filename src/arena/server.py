import logging
import os
import time
import uuid
from collections.abc import AsyncIterator
from typing import Any

from typing_extensions import TypedDict

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from starlette.background import BackgroundTask

from .auth import IdentityResolver, parse_inbound_keys
from .config import MODELS_FILE, format_validation_error, load_settings, parse_env_list
from .dispatcher import Dispatcher
from .errors import (
    ArenaError,
    AuthenticationError,
    ConfigValidationError,
    make_error_body,
    openrouter_guidance,
)
from .metrics import MetricsLogger
from .providers import derive_referer
from .store import ModelConfigStore
from .streaming import ErrorEvent, TokenEvent, TokenStream
from .types import ChatRequest, ModelConfig, ProbeRequest, Provider

logger = logging.getLogger(__name__)

app = FastAPI(title="model-arena")

CONFIG_DIR = os.environ.get(
    "ARENA_CONFIG_DIR",
    os.path.join(os.path.dirname(os.path.dirname(__file__)), "..", "config"),
)
METRICS_DIR = os.environ.get(
    "ARENA_METRICS_DIR",
    os.path.join(os.path.dirname(os.path.dirname(__file__)), "..", "metrics"),
)
INBOUND_API_KEYS = parse_inbound_keys(os.environ.get("ARENA_INBOUND_API_KEYS", ""))
API_KEY_HEADER = os.environ.get("ARENA_API_KEY_HEADER", "x-api-key")
ALLOWED_ORIGINS = parse_env_list(os.environ.get("ARENA_CORS_ALLOW_ORIGINS", ""))
PROM_CONTENT_TYPE = "text/plain; version=0.0.4; charset=utf-8"
PROBE_SUCCESS_MESSAGE = "API key and model ID are valid"


class _ModelSummary(TypedDict):
    id: str
    name: str
    provider: str
    baseUrl: str | None
    modelId: str
    hasApiKey: bool


class _ModelListResponse(TypedDict):
    scope: str
    data: list[_ModelSummary]


settings = load_settings(CONFIG_DIR)
store = ModelConfigStore(os.path.join(CONFIG_DIR, MODELS_FILE))
dispatcher = Dispatcher(store, settings)
identity_resolver = IdentityResolver(INBOUND_API_KEYS, header=API_KEY_HEADER)
metrics = MetricsLogger(METRICS_DIR)

if ALLOWED_ORIGINS:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

if not identity_resolver.enabled:
    logger.warning("inbound api keys not configured; every caller uses the anonymous scope")


def _make_response_headers(*, req_id: str, provider: str | None, attempts: int) -> dict[str, str]:
    return {
        "x-arena-request-id": req_id,
        "x-arena-provider": provider or "unknown",
        "x-arena-fallback-attempts": str(max(attempts - 1, 0)),
    }


def _log_request_event(
    level: int,
    *,
    event: str,
    req_id: str,
    provider: str | None,
    attempts: int,
    detail: str | None = None,
) -> None:
    provider_value = provider or "unknown"
    message = f"{event} req_id={req_id} provider={provider_value} attempts={attempts}"
    if detail:
        message = f"{message} detail={detail}"
    logger.log(level, message)


def _provider_name(config: ModelConfig | None) -> str | None:
    return config.provider.value if config is not None else None


async def _log_metrics(
    *,
    endpoint: str,
    req_id: str,
    scope: str,
    start: float,
    config: ModelConfig | None,
    status: int,
    attempts: int,
    error: ArenaError | None = None,
    search_tier: str | None = None,
) -> None:
    record: dict[str, Any] = {
        "req_id": req_id,
        "ts": time.time(),
        "endpoint": endpoint,
        "scope": scope,
        "provider": _provider_name(config),
        "model": config.model_id if config is not None else None,
        "latency_ms": int((time.perf_counter() - start) * 1000),
        "ok": error is None,
        "status": status,
        "retries": max(attempts - 1, 0),
    }
    if search_tier is not None:
        record["search_tier"] = search_tier
    if error is not None:
        record["error"] = error.kind.value
        record["error_message"] = error.message
    await metrics.write(record)


def _error_response(
    err: ArenaError, *, req_id: str, provider: str | None, attempts: int
) -> JSONResponse:
    return JSONResponse(
        make_error_body(err),
        status_code=err.status_code,
        headers=_make_response_headers(req_id=req_id, provider=provider, attempts=attempts),
    )


@app.exception_handler(RequestValidationError)
async def _request_validation_handler(req: Request, exc: RequestValidationError) -> JSONResponse:
    err = ConfigValidationError("Invalid request body", details=format_validation_error(exc))
    logger.warning("request rejected path=%s detail=%s", req.url.path, err.details)
    return JSONResponse(make_error_body(err), status_code=err.status_code)


@app.get("/healthz")
async def healthz() -> dict[str, Any]:
    return {
        "status": "ok",
        "store": store.summary(),
        "auth": "enabled" if identity_resolver.enabled else "disabled",
    }


@app.get("/metrics")
async def metrics_endpoint(req: Request) -> Response:
    identity = identity_resolver.current_identity(req)
    if identity_resolver.enabled and not identity.authenticated:
        err = AuthenticationError("missing or invalid api key")
        return JSONResponse(make_error_body(err), status_code=err.status_code)
    rendered = metrics.render_prometheus()
    if rendered is None:
        return Response(status_code=404)
    return Response(rendered.encode("utf-8"), media_type=PROM_CONTENT_TYPE)


@app.get("/api/models")
async def list_models(req: Request) -> _ModelListResponse:
    identity = identity_resolver.current_identity(req)
    data: list[_ModelSummary] = [
        {
            "id": config.id,
            "name": config.name,
            "provider": config.provider.value,
            "baseUrl": config.base_url,
            "modelId": config.model_id,
            "hasApiKey": bool(config.api_key),
        }
        for config in store.list_models(identity.scope_id)
    ]
    payload: _ModelListResponse = {"scope": identity.scope_id, "data": data}
    return payload


@app.post("/api/chat")
async def chat(req: Request, body: ChatRequest):
    req_id = str(uuid.uuid4())
    start = time.perf_counter()
    identity = identity_resolver.current_identity(req)
    config: ModelConfig | None = None
    try:
        config = dispatcher.resolve_config(body.config, identity.scope_id)
    except ArenaError as exc:
        _log_request_event(
            logging.WARNING,
            event="chat.rejected",
            req_id=req_id,
            provider=None,
            attempts=0,
            detail=exc.message,
        )
        await _log_metrics(
            endpoint="chat",
            req_id=req_id,
            scope=identity.scope_id,
            start=start,
            config=None,
            status=exc.status_code,
            attempts=0,
            error=exc,
        )
        return _error_response(exc, req_id=req_id, provider=None, attempts=0)

    provider_name = config.provider.value
    messages = [message.model_dump(exclude_none=True) for message in body.messages]
    try:
        dispatch = await dispatcher.open_chat(
            config,
            messages,
            enable_web_search=bool(body.enable_web_search),
            referer=derive_referer(req.headers, settings.default_referer),
        )
    except ArenaError as exc:
        _log_request_event(
            logging.ERROR,
            event="chat.dispatch failed",
            req_id=req_id,
            provider=provider_name,
            attempts=exc.attempts,
            detail=f"status={exc.status_code} kind={exc.kind.value} {exc.message}",
        )
        await _log_metrics(
            endpoint="chat",
            req_id=req_id,
            scope=identity.scope_id,
            start=start,
            config=config,
            status=exc.status_code,
            attempts=exc.attempts,
            error=exc,
        )
        return _error_response(exc, req_id=req_id, provider=provider_name, attempts=exc.attempts)

    _log_request_event(
        logging.INFO,
        event="chat.dispatch success",
        req_id=req_id,
        provider=provider_name,
        attempts=dispatch.attempts,
    )
    await _log_metrics(
        endpoint="chat",
        req_id=req_id,
        scope=identity.scope_id,
        start=start,
        config=config,
        status=200,
        attempts=dispatch.attempts,
        search_tier=dispatch.search_tier,
    )
    return _stream_response(
        dispatch.stream, req_id=req_id, provider=provider_name, attempts=dispatch.attempts
    )


def _stream_response(
    stream: TokenStream, *, req_id: str, provider: str, attempts: int
) -> StreamingResponse:
    async def token_source() -> AsyncIterator[bytes]:
        try:
            async for event in stream.events():
                if isinstance(event, TokenEvent):
                    yield event.text.encode("utf-8")
                elif isinstance(event, ErrorEvent):
                    # status line is already sent; the partial body stands
                    _log_request_event(
                        logging.ERROR,
                        event="chat.stream failed",
                        req_id=req_id,
                        provider=provider,
                        attempts=attempts,
                        detail=event.message,
                    )
        finally:
            await stream.aclose()

    # the body generator never starts if the client leaves before the first chunk
    return StreamingResponse(
        token_source(),
        media_type="text/plain",
        headers=_make_response_headers(req_id=req_id, provider=provider, attempts=attempts),
        background=BackgroundTask(stream.aclose),
    )


def _probe_failure_body(err: ArenaError, config: ModelConfig) -> dict[str, Any]:
    friendly = err.message
    if config.provider is Provider.OPENROUTER:
        friendly = openrouter_guidance(err.status_code, err.message, config.model_id)
    return {
        "success": False,
        "error": friendly,
        "code": err.code,
        "statusCode": err.status_code,
        "originalError": err.message,
        "details": err.details if err.details is not None else {},
        "modelId": config.model_id,
        "provider": config.provider.value,
        "debug": {
            "requestModelId": config.model_id,
            "errorType": err.error_type or err.kind.value,
            "errorCode": err.code,
            "statusCode": err.status_code,
        },
    }


@app.post("/api/test-model")
async def probe_model(req: Request, body: ProbeRequest):
    req_id = str(uuid.uuid4())
    start = time.perf_counter()
    identity = identity_resolver.current_identity(req)
    headers = _make_response_headers(req_id=req_id, provider=None, attempts=0)
    try:
        config = dispatcher.resolve_config(body.config, identity.scope_id)
    except ArenaError as exc:
        _log_request_event(
            logging.WARNING,
            event="probe.rejected",
            req_id=req_id,
            provider=None,
            attempts=0,
            detail=exc.message,
        )
        return JSONResponse(
            {"success": False, "error": exc.message},
            status_code=exc.status_code,
            headers=headers,
        )

    provider_name = config.provider.value
    headers = _make_response_headers(req_id=req_id, provider=provider_name, attempts=1)
    try:
        result = await dispatcher.probe(
            config, referer=derive_referer(req.headers, settings.default_referer)
        )
    except ArenaError as exc:
        status = exc.status_code if 400 <= exc.status_code < 600 else 500
        _log_request_event(
            logging.ERROR,
            event="probe.failed",
            req_id=req_id,
            provider=provider_name,
            attempts=1,
            detail=f"status={exc.status_code} kind={exc.kind.value} {exc.message}",
        )
        await _log_metrics(
            endpoint="test-model",
            req_id=req_id,
            scope=identity.scope_id,
            start=start,
            config=config,
            status=status,
            attempts=1,
            error=exc,
        )
        return JSONResponse(_probe_failure_body(exc, config), status_code=status, headers=headers)

    _log_request_event(
        logging.INFO,
        event="probe.success",
        req_id=req_id,
        provider=provider_name,
        attempts=1,
    )
    await _log_metrics(
        endpoint="test-model",
        req_id=req_id,
        scope=identity.scope_id,
        start=start,
        config=config,
        status=200,
        attempts=1,
    )
    return JSONResponse(
        {"success": True, "message": PROBE_SUCCESS_MESSAGE, "model": result.model},
        headers=headers,
    )
