import importlib
import sys
from pathlib import Path
from types import ModuleType

import httpx
import pytest
from fastapi.testclient import TestClient

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))


def load_app(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> ModuleType:
    config_dir = tmp_path / "config"
    config_dir.mkdir(exist_ok=True)
    monkeypatch.setenv("ARENA_CONFIG_DIR", str(config_dir))
    monkeypatch.setenv("ARENA_METRICS_DIR", str(tmp_path / "metrics"))
    monkeypatch.delenv("ARENA_INBOUND_API_KEYS", raising=False)
    module_name = "src.arena.server"
    sys.modules.pop(module_name, None)
    importlib.invalidate_caches()
    return importlib.import_module(module_name)


def completion(model: str) -> httpx.Response:
    return httpx.Response(
        200,
        json={
            "id": "chatcmpl-1",
            "model": model,
            "choices": [{"index": 0, "message": {"role": "assistant", "content": "Hello!"}}],
        },
    )


def test_probe_success_reports_upstream_model(monkeypatch, tmp_path, fake_upstream) -> None:
    upstream = fake_upstream(lambda request: completion("gpt-4o-2024-08-06"))
    server = load_app(monkeypatch, tmp_path)
    client = TestClient(server.app)

    response = client.post(
        "/api/test-model",
        json={"modelConfig": {"provider": "openai", "apiKey": "sk", "modelId": "gpt-4o"}},
    )

    assert response.status_code == 200
    assert response.json() == {
        "success": True,
        "message": "API key and model ID are valid",
        "model": "gpt-4o-2024-08-06",
    }
    assert upstream.payloads[0] == {
        "model": "gpt-4o",
        "messages": [{"role": "user", "content": "Hello"}],
        "stream": False,
        "max_tokens": 50,
    }


def test_probe_twice_is_independent(monkeypatch, tmp_path, fake_upstream) -> None:
    upstream = fake_upstream(lambda request: completion("openai/gpt-4o"))
    server = load_app(monkeypatch, tmp_path)
    client = TestClient(server.app)
    body = {"modelConfig": {"provider": "openrouter", "apiKey": "sk-or", "modelId": "openai/gpt-4o"}}

    first = client.post("/api/test-model", json=body)
    second = client.post("/api/test-model", json=body)

    assert first.status_code == second.status_code == 200
    assert first.json() == second.json()
    assert len(upstream.requests) == 2
    assert upstream.payloads[0] == upstream.payloads[1]
    assert not (tmp_path / "config" / "models.toml").exists()


def test_probe_missing_configuration(monkeypatch, tmp_path, fake_upstream) -> None:
    upstream = fake_upstream(lambda request: completion("unused"))
    server = load_app(monkeypatch, tmp_path)
    client = TestClient(server.app)

    response = client.post("/api/test-model", json={})

    assert response.status_code == 400
    assert response.json() == {"success": False, "error": "Missing model configuration"}
    assert upstream.requests == []


def test_probe_custom_without_base_url(monkeypatch, tmp_path, fake_upstream) -> None:
    fake_upstream(lambda request: completion("unused"))
    server = load_app(monkeypatch, tmp_path)
    client = TestClient(server.app)

    response = client.post(
        "/api/test-model",
        json={"modelConfig": {"provider": "custom", "apiKey": "sk", "modelId": "llama3"}},
    )

    assert response.status_code == 400
    assert response.json()["error"] == "Missing baseUrl for custom provider"


def test_probe_openrouter_failure_carries_guidance(monkeypatch, tmp_path, fake_upstream) -> None:
    fake_upstream(
        lambda request: httpx.Response(
            404, json={"error": {"message": "No endpoints found for nope/model.", "code": 404}}
        )
    )
    server = load_app(monkeypatch, tmp_path)
    client = TestClient(server.app)

    response = client.post(
        "/api/test-model",
        json={"modelConfig": {"provider": "openrouter", "apiKey": "sk-or", "modelId": "nope/model"}},
    )

    assert response.status_code == 404
    body = response.json()
    assert body["success"] is False
    assert 'Model "nope/model" is not available on OpenRouter' in body["error"]
    assert body["originalError"] == "No endpoints found for nope/model."
    assert body["statusCode"] == 404
    assert body["code"] == "404"
    assert body["modelId"] == "nope/model"
    assert body["provider"] == "openrouter"
    assert body["debug"]["requestModelId"] == "nope/model"


def test_probe_anthropic_auth_failure(monkeypatch, tmp_path, fake_upstream) -> None:
    fake_upstream(
        lambda request: httpx.Response(
            401,
            json={
                "type": "error",
                "error": {"type": "authentication_error", "message": "invalid x-api-key"},
            },
        )
    )
    server = load_app(monkeypatch, tmp_path)
    client = TestClient(server.app)

    response = client.post(
        "/api/test-model",
        json={
            "modelConfig": {
                "provider": "anthropic",
                "apiKey": "sk-bad",
                "modelId": "claude-3-haiku-20240307",
            }
        },
    )

    assert response.status_code == 401
    body = response.json()
    assert body["error"] == "invalid x-api-key"
    assert body["code"] == "invalid_api_key"
    assert body["debug"]["errorType"] == "authentication_error"


def test_probe_transport_failure_is_500(monkeypatch, tmp_path, fake_upstream) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectTimeout("timed out", request=request)

    fake_upstream(handler)
    server = load_app(monkeypatch, tmp_path)
    client = TestClient(server.app)

    response = client.post(
        "/api/test-model",
        json={"modelConfig": {"provider": "openai", "apiKey": "sk", "modelId": "gpt-4o"}},
    )

    assert response.status_code == 500
    assert response.json()["success"] is False
    assert response.json()["statusCode"] == 500
