# tests/conftest.py
from __future__ import annotations

import os
import tempfile
from pathlib import Path

# Must run before the app or the repo module is imported: both read settings at import time.
_tmp_dir = Path(tempfile.mkdtemp(prefix="toolrelay-tests-"))
os.environ["DB_URL"] = f"sqlite:///{(_tmp_dir / 'test.db').as_posix()}"
os.environ["PROVIDER_BASE_URL"] = "http://upstream.test"
os.environ["PROVIDER_API_KEY"] = "sk-test"
os.environ["TAVILY_API_KEY"] = "tvly-test"
os.environ["TAVILY_BASE_URL"] = "http://tavily.test"
os.environ.setdefault("LOG_FORMAT", "plain")

import pytest

from toolrelay.core.settings import get_settings

get_settings.cache_clear()


@pytest.fixture
def user_messages():
    from toolrelay.orchestration.types import ChatMessage

    return [ChatMessage(role="user", content="hello there")]
