"""Runtime settings dataclass and persistence helpers."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping

__all__ = [
    "RuntimeSettings",
    "SettingsStore",
    "DEFAULT_SETTINGS_DIR",
    "DEFAULT_MAX_TOOL_ROUNDS",
    "MAX_TOOL_ROUNDS",
]

LOGGER = logging.getLogger(__name__)
DEFAULT_SETTINGS_DIR = Path.home() / ".switchyard"
_DEFAULT_SETTINGS_PATH = DEFAULT_SETTINGS_DIR / "settings.json"
_SETTINGS_VERSION = 1
MAX_TOOL_ROUNDS = 5
DEFAULT_MAX_TOOL_ROUNDS = MAX_TOOL_ROUNDS
_ENV_OVERRIDES: Mapping[str, str] = {
    "SWITCHYARD_OPENAI_BASE_URL": "openai_base_url",
    "SWITCHYARD_ROUTER_BASE_URL": "router_base_url",
    "SWITCHYARD_ROUTER_REFERER": "router_referer",
    "SWITCHYARD_ROUTER_TITLE": "router_title",
    "SWITCHYARD_CODEX_PATH": "subprocess_executable",
    "SWITCHYARD_MODEL": "default_model",
}
_BOOL_ENV_OVERRIDES: Mapping[str, str] = {
    "SWITCHYARD_DEBUG_LOGGING": "debug_logging",
}
_FLOAT_ENV_OVERRIDES: Mapping[str, str] = {
    "SWITCHYARD_REQUEST_TIMEOUT": "request_timeout",
    "SWITCHYARD_SUBPROCESS_GRACE": "subprocess_grace_seconds",
}
_INT_ENV_OVERRIDES: Mapping[str, str] = {
    "SWITCHYARD_MAX_TOOL_ROUNDS": "max_tool_rounds",
}
_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}


@dataclass(slots=True, frozen=True)
class RuntimeSettings:
    """User-tunable knobs shared by every runtime instance.

    Attributes:
        openai_base_url: Base URL of the direct chat-completions API.
        router_base_url: Base URL of the router service.
        router_referer: Attribution sent to the router as ``HTTP-Referer``.
        router_title: Attribution sent to the router as ``X-Title``.
        request_timeout: Read timeout in seconds for HTTP transports; None disables it.
        max_tool_rounds: Model calls per message, at most ``MAX_TOOL_ROUNDS``.
        subprocess_executable: Path or name of the Codex CLI.
        subprocess_grace_seconds: Delay between SIGTERM and kill on abort.
        debug_logging: Log full outgoing payloads at debug level.
        default_model: Model used when a runtime config does not name one.
    """

    openai_base_url: str = "https://api.openai.com/v1"
    router_base_url: str = "https://openrouter.ai/api/v1"
    router_referer: str = ""
    router_title: str = "Switchyard"
    request_timeout: float | None = 90.0
    max_tool_rounds: int = DEFAULT_MAX_TOOL_ROUNDS
    subprocess_executable: str = "codex"
    subprocess_grace_seconds: float = 2.0
    debug_logging: bool = False
    default_model: str = "openai/gpt-4o"


class SettingsStore:
    """Persistence adapter for :class:`RuntimeSettings`."""

    def __init__(self, path: Path | None = None) -> None:
        self._path = path or _DEFAULT_SETTINGS_PATH

    @property
    def path(self) -> Path:
        """Return the resolved path backing this store."""

        return self._path

    def load(self, *, overrides: Mapping[str, Any] | None = None) -> RuntimeSettings:
        """Load settings from disk, applying CLI/environment overrides when present."""

        payload = self._read_payload()
        settings = RuntimeSettings()
        if payload:
            data = _filter_fields(payload)
            try:
                settings = RuntimeSettings(**data)
            except TypeError as exc:
                LOGGER.warning("Settings payload contained unexpected data: %s", exc)
                settings = RuntimeSettings()
            LOGGER.debug("Settings loaded from %s (%d field(s))", self._path, len(data))

        if overrides:
            settings = self._apply_overrides(settings, overrides, source="CLI")

        settings = self._apply_env_overrides(settings)
        return self._validate(settings)

    def save(self, settings: RuntimeSettings) -> Path:
        """Persist settings to disk with atomic file writes."""

        data = asdict(settings)
        data["version"] = _SETTINGS_VERSION
        body = json.dumps(data, indent=2, sort_keys=True)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(".tmp")
        tmp_path.write_text(body, encoding="utf-8")
        tmp_path.replace(self._path)
        LOGGER.debug("Settings saved to %s", self._path)
        return self._path

    def _read_payload(self) -> Dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            text = self._path.read_text(encoding="utf-8")
            payload = json.loads(text)
        except FileNotFoundError:
            return {}
        except json.JSONDecodeError as exc:
            LOGGER.warning("Settings file %s is not valid JSON: %s", self._path, exc)
            return {}
        if not isinstance(payload, dict):
            LOGGER.warning("Settings file %s does not hold a JSON object", self._path)
            return {}
        return payload

    def _apply_overrides(
        self,
        settings: RuntimeSettings,
        overrides: Mapping[str, Any],
        *,
        source: str = "runtime",
    ) -> RuntimeSettings:
        allowed = {field.name for field in fields(RuntimeSettings)}
        filtered: Dict[str, Any] = {}
        for key, value in overrides.items():
            if key not in allowed or value is None:
                continue
            filtered[key] = value
        if filtered:
            LOGGER.debug("Applying %s settings overrides: %s", source, sorted(filtered))
            settings = replace(settings, **filtered)
        return settings

    def _apply_env_overrides(self, settings: RuntimeSettings) -> RuntimeSettings:
        overrides: Dict[str, Any] = {}
        for env_name, field_name in _ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is not None:
                overrides[field_name] = value
        for env_name, field_name in _BOOL_ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is not None:
                overrides[field_name] = value.strip().lower() in _TRUE_VALUES
        for env_name, field_name in _INT_ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is None:
                continue
            try:
                overrides[field_name] = int(value, 10)
            except ValueError:
                LOGGER.warning(
                    "Environment override %s=%s is not a valid integer",
                    env_name,
                    value,
                )
        for env_name, field_name in _FLOAT_ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is None:
                continue
            try:
                overrides[field_name] = float(value)
            except ValueError:
                LOGGER.warning(
                    "Environment override %s=%s is not a valid float", env_name, value
                )
        if overrides:
            settings = self._apply_overrides(settings, overrides, source="environment")
        return settings

    @staticmethod
    def _validate(settings: RuntimeSettings) -> RuntimeSettings:
        if not isinstance(settings.max_tool_rounds, int) or settings.max_tool_rounds < 1:
            LOGGER.warning(
                "max_tool_rounds=%r is invalid; using %d",
                settings.max_tool_rounds,
                DEFAULT_MAX_TOOL_ROUNDS,
            )
            settings = replace(settings, max_tool_rounds=DEFAULT_MAX_TOOL_ROUNDS)
        elif settings.max_tool_rounds > MAX_TOOL_ROUNDS:
            LOGGER.warning(
                "max_tool_rounds=%d exceeds the limit; using %d",
                settings.max_tool_rounds,
                MAX_TOOL_ROUNDS,
            )
            settings = replace(settings, max_tool_rounds=MAX_TOOL_ROUNDS)
        return settings


def _filter_fields(payload: Mapping[str, Any]) -> Dict[str, Any]:
    allowed = {field.name for field in fields(RuntimeSettings)}
    return {key: value for key, value in payload.items() if key in allowed}
