"""Shared pytest fixtures."""

from __future__ import annotations

from pathlib import Path

import pytest

from switchyard.services.settings import RuntimeSettings
from tests.helpers import StaticCredentials


@pytest.fixture
def settings() -> RuntimeSettings:
    return RuntimeSettings(
        openai_base_url="https://openai.test/v1",
        router_base_url="https://router.test/api/v1",
        router_referer="https://switchyard.test",
        router_title="Switchyard Tests",
        request_timeout=5.0,
        subprocess_grace_seconds=0.5,
    )


@pytest.fixture
def credentials() -> StaticCredentials:
    return StaticCredentials({"openai_api_key": "sk-openai", "openrouter_api_key": "sk-router"})


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    root = tmp_path / "workspace"
    root.mkdir()
    return root


@pytest.fixture(autouse=True)
def _isolate_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "OPENAI_API_KEY",
        "OPENROUTER_API_KEY",
        "SWITCHYARD_MODEL",
        "SWITCHYARD_MAX_TOOL_ROUNDS",
        "SWITCHYARD_DEBUG_LOGGING",
        "SWITCHYARD_REQUEST_TIMEOUT",
        "SWITCHYARD_LOG_DIR",
    ):
        monkeypatch.delenv(name, raising=False)
