# toolrelay/core/settings.py
from __future__ import annotations

import os
from functools import lru_cache
from typing import Dict, Optional, Union

from pydantic import AnyUrl, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class AppSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_ignore_empty=True, extra="ignore")

    app_env: str = "dev"
    app_name: str = "Tool Relay"
    app_host: str = "127.0.0.1"
    app_port: int = 8000

    log_level: str = "INFO"
    db_url: str = "sqlite:///data/app.db"
    cors_allowed_origins: str = Field(default="http://127.0.0.1:5173", validation_alias="CORS_ALLOWED_ORIGINS")

    # Upstream model service (OpenAI-compatible chat completions)
    provider_base_url: Optional[Union[AnyUrl, str]] = Field(
        default="https://api.openai.com", validation_alias="PROVIDER_BASE_URL"
    )
    provider_api_key: Optional[str] = Field(default=None, validation_alias="PROVIDER_API_KEY")
    provider_timeout_sec: float = Field(default=60.0, validation_alias="PROVIDER_TIMEOUT_SEC")
    default_model: str = Field(default="gpt-4o-mini", validation_alias="DEFAULT_MODEL")

    # Agent loop limits
    engine_max_rounds: int = Field(default=5, validation_alias="ENGINE_MAX_ROUNDS")
    engine_max_tools_per_round: int = Field(default=5, validation_alias="ENGINE_MAX_TOOLS_PER_ROUND")
    engine_duplicate_call_limit: int = Field(default=2, validation_alias="ENGINE_DUPLICATE_CALL_LIMIT")
    tool_call_caps: Dict[str, int] = Field(default_factory=lambda: {"fetch_url": 3})

    # Streaming
    stream_heartbeat_sec: float = Field(default=10.0, validation_alias="STREAM_HEARTBEAT_SEC")

    # Built-in tools
    tavily_api_key: Optional[str] = Field(default=None, validation_alias="TAVILY_API_KEY")
    tavily_base_url: str = Field(default="https://api.tavily.com", validation_alias="TAVILY_BASE_URL")
    fetch_max_chars: int = Field(default=8000, validation_alias="FETCH_MAX_CHARS")
    fetch_timeout_sec: float = Field(default=10.0, validation_alias="FETCH_TIMEOUT_SEC")

    # Context routing classification cache
    classification_cache_ttl_sec: int = Field(default=300, validation_alias="CLASSIFICATION_CACHE_TTL_SEC")
    classification_cache_max: int = Field(default=1000, validation_alias="CLASSIFICATION_CACHE_MAX")

    @property
    def db_dialect(self) -> str:
        return self.db_url.split(":", 1)[0] if ":" in self.db_url else self.db_url


@lru_cache(maxsize=1)
def get_settings() -> AppSettings:
    # TOOL_CAP__FETCH_URL=2 -> {"fetch_url": 2}
    caps: Dict[str, int] = {}
    for k, v in os.environ.items():
        if not k.startswith("TOOL_CAP__"):
            continue
        name = k[len("TOOL_CAP__"):].lower()
        if not name:
            continue
        try:
            caps[name] = int(v)
        except ValueError:
            continue
    s = AppSettings()
    s.tool_call_caps = {**s.tool_call_caps, **caps}
    return s
