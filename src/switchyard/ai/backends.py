"""Backend classification for model identifiers.

``select_backend`` is the single place that inspects a model id. Everything
else branches on the returned :class:`Backend`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Mapping

if TYPE_CHECKING:
    from ..services.settings import RuntimeSettings

__all__ = [
    "Backend",
    "BackendProfile",
    "select_backend",
    "profile_for",
    "subprocess_model_name",
    "SUBPROCESS_ALIASES",
    "DIRECT_MODEL_PREFIXES",
]


class Backend(Enum):
    """Transport family serving a model."""

    DIRECT_API = "direct_api"
    ROUTER = "router"
    SUBPROCESS = "subprocess"


SUBPROCESS_ALIASES: frozenset[str] = frozenset(
    {"codex", "codex-mini", "codex-mini-latest", "gpt-5-codex"}
)
_SUBPROCESS_NAMESPACE = "codex/"
DIRECT_MODEL_PREFIXES: tuple[str, ...] = ("gpt-", "chatgpt-", "o1", "o3", "o4")


def select_backend(model_id: str) -> Backend:
    """Classify ``model_id`` into the backend that serves it.

    Rules, in order:

    * a distinguished CLI alias (or anything under ``codex/``) -> SUBPROCESS
    * a namespaced id such as ``anthropic/claude-3.5-sonnet`` -> ROUTER
    * a bare id with a known model-family prefix such as ``gpt-4o`` -> DIRECT_API
    * any other bare id -> ROUTER

    Raises:
        ValueError: If ``model_id`` is empty.
    """
    normalized = (model_id or "").strip().lower()
    if not normalized:
        raise ValueError("model_id is required")
    if normalized in SUBPROCESS_ALIASES or normalized.startswith(_SUBPROCESS_NAMESPACE):
        return Backend.SUBPROCESS
    if "/" in normalized:
        return Backend.ROUTER
    if normalized.startswith(DIRECT_MODEL_PREFIXES):
        return Backend.DIRECT_API
    return Backend.ROUTER


def subprocess_model_name(model_id: str) -> str:
    """Return the model argument handed to the CLI for ``model_id``."""
    normalized = model_id.strip()
    if normalized.lower().startswith(_SUBPROCESS_NAMESPACE):
        return normalized[len(_SUBPROCESS_NAMESPACE):]
    return normalized


@dataclass(slots=True, frozen=True)
class BackendProfile:
    """Endpoint and credential details for one backend.

    Attributes:
        backend: The backend this profile describes.
        provider: Display name used to prefix every error message.
        endpoint: Chat-completions URL; empty for the subprocess backend.
        credential_kind: Kind passed to the credential resolver, or None when
            the backend authenticates out-of-band.
        headers: Extra request headers.
    """

    backend: Backend
    provider: str
    endpoint: str = ""
    credential_kind: str | None = None
    headers: Mapping[str, str] = field(default_factory=dict)

    @property
    def requires_credential(self) -> bool:
        return self.credential_kind is not None

    def request_headers(self, credential: str) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "text/event-stream",
            "Authorization": f"Bearer {credential}",
        }
        headers.update(self.headers)
        return headers


def profile_for(backend: Backend, settings: "RuntimeSettings") -> BackendProfile:
    """Build the :class:`BackendProfile` for ``backend`` from runtime settings."""
    if backend is Backend.DIRECT_API:
        return BackendProfile(
            backend=backend,
            provider="OpenAI",
            endpoint=_completions_url(settings.openai_base_url),
            credential_kind="openai_api_key",
        )
    if backend is Backend.ROUTER:
        headers: dict[str, str] = {}
        if settings.router_referer:
            headers["HTTP-Referer"] = settings.router_referer
        if settings.router_title:
            headers["X-Title"] = settings.router_title
        return BackendProfile(
            backend=backend,
            provider="OpenRouter",
            endpoint=_completions_url(settings.router_base_url),
            credential_kind="openrouter_api_key",
            headers=headers,
        )
    return BackendProfile(backend=backend, provider="Codex")


def _completions_url(base_url: str) -> str:
    return base_url.rstrip("/") + "/chat/completions"
