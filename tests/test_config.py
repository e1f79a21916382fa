# tests/test_config.py
from __future__ import annotations

from httpx import AsyncClient, ASGITransport
from apps.api.main import app

from toolrelay.core.settings import get_settings
from toolrelay.orchestration.types import EngineLimits


async def test_config_safe_fields() -> None:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        resp = await ac.get("/config")
    assert resp.status_code == 200
    data = resp.json()
    assert set(["app_name", "env", "db_dialect", "log_level", "provider", "engine"]).issubset(data.keys())
    assert "db_url" not in data
    assert "sk-test" not in resp.text
    assert "tvly-test" not in resp.text
    assert data["provider"]["api_key_set"] is True
    assert data["engine"]["max_rounds"] == 5
    assert data["engine"]["tool_call_caps"] == {"fetch_url": 3}


def test_tool_caps_from_environment(monkeypatch) -> None:
    monkeypatch.setenv("TOOL_CAP__WEB_SEARCH", "2")
    monkeypatch.setenv("TOOL_CAP__FETCH_URL", "1")
    monkeypatch.setenv("TOOL_CAP__BROKEN", "many")
    get_settings.cache_clear()
    try:
        s = get_settings()
        assert s.tool_call_caps == {"fetch_url": 1, "web_search": 2}
        limits = EngineLimits.from_settings(s)
        assert limits.tool_call_caps == {"fetch_url": 1, "web_search": 2}
        assert limits.max_tools_per_round == 5
    finally:
        get_settings.cache_clear()


def test_engine_limits_from_environment(monkeypatch) -> None:
    monkeypatch.setenv("ENGINE_MAX_ROUNDS", "3")
    get_settings.cache_clear()
    try:
        assert EngineLimits.from_settings(get_settings()).max_rounds == 3
    finally:
        get_settings.cache_clear()
