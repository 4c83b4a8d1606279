import json

import pytest
from asgi_lifespan import LifespanManager
from httpx import ASGITransport, AsyncClient

from agentrelay.config import load_settings


@pytest.mark.asyncio
async def test_get_settings_masks_secrets(app_factory):
    app, _, _ = app_factory(tavily_api_key="secret-key", llm_api_key="sk-secret")
    async with LifespanManager(app):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            res = await client.get("/settings")
            assert res.status_code == 200
            data = res.json()
            assert data["settings"]["tavily_api_key"] == "********"
            assert data["settings"]["llm_api_key"] == "********"
            assert data["settings"]["llm_model"] == "test-model"


def test_config_precedence_configjson_wins_by_default(tmp_path, monkeypatch):
    config_path = tmp_path / "config.json"
    config_path.write_text(json.dumps({"llm_base_url": "http://config"}))
    monkeypatch.setenv("LLM_BASE_URL", "http://env")
    monkeypatch.delenv("AGENTRELAY_ENV_OVERRIDES_CONFIG", raising=False)
    settings = load_settings(config_path=config_path)
    assert settings.llm_base_url == "http://config"


def test_env_override_when_flag_set(tmp_path, monkeypatch):
    config_path = tmp_path / "config.json"
    config_path.write_text(json.dumps({"llm_base_url": "http://config"}))
    monkeypatch.setenv("LLM_BASE_URL", "http://env")
    monkeypatch.setenv("AGENTRELAY_ENV_OVERRIDES_CONFIG", "1")
    settings = load_settings(config_path=config_path)
    assert settings.llm_base_url == "http://env"


def test_env_values_are_typed(tmp_path, monkeypatch):
    monkeypatch.setenv("TOKEN_DELAY_MS", "0")
    monkeypatch.setenv("TASK_TIMEOUT_S", "2.5")
    monkeypatch.setenv("PORT", "9001")
    monkeypatch.setenv("MAX_PENDING_TURNS", "3")
    monkeypatch.setenv("CORS_ALLOW_ORIGINS", "http://a.test, http://b.test")
    settings = load_settings(config_path=tmp_path / "missing.json")
    assert settings.token_delay_ms == 0
    assert settings.task_timeout_s == 2.5
    assert settings.port == 9001
    assert settings.max_pending_turns == 3
    assert settings.cors_allow_origins == ["http://a.test", "http://b.test"]


def test_secret_from_env_fills_blank_config_value(tmp_path, monkeypatch):
    config_path = tmp_path / "config.json"
    config_path.write_text(json.dumps({"tavily_api_key": ""}))
    monkeypatch.setenv("TAVILY_API_KEY", "from-env")
    monkeypatch.delenv("AGENTRELAY_ENV_OVERRIDES_CONFIG", raising=False)
    settings = load_settings(config_path=config_path)
    assert settings.tavily_api_key == "from-env"
