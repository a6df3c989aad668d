"""Agent runtime: turns one user message into a bounded run of model calls.

The runtime owns the conversation history and drives a small state machine
per ``send_message`` call::

    Idle -> Streaming -> (ToolExecuting -> Streaming)* -> Complete | Error

HTTP backends loop model call -> sequential tool execution until the model
answers without tool calls or the round cap is hit. The CLI backend runs
exactly once; it executes its own tools.
"""

from __future__ import annotations

import contextlib
import inspect
import logging
import uuid
from enum import Enum
from pathlib import Path
from typing import Any, AsyncIterator, Iterable, Sequence

import httpx

from .backends import Backend, BackendProfile, profile_for, select_backend, subprocess_model_name
from .cancellation import AbortSignal
from .client import ChatStreamClient
from .dispatch import ToolClientRegistry, ToolDispatchRouter
from .errors import (
    AbortedError,
    AuthError,
    RoundOverflowError,
    SwitchyardError,
)
from .events import (
    CompleteEvent,
    ErrorEvent,
    RuntimeEvent,
    TextComplete,
    ToolResultEvent,
    ToolStart,
)
from .skills import SkillLoader, build_skill_messages, extract_mentions, load_workspace_skills
from .sources import RemoteClientFactory, Source
from .subprocess_backend import CodexSubprocessAdapter, flatten_transcript
from .types import Message, RuntimeConfig, ThinkingLevel, ToolCall
from ..services.credentials import DEFAULT_ENV_VARS, CredentialResolver, EnvCredentialResolver
from ..services.settings import MAX_TOOL_ROUNDS, RuntimeSettings

__all__ = ["AgentRuntime", "RuntimeState", "THINKING_LEVELS"]

LOGGER = logging.getLogger(__name__)

THINKING_LEVELS: tuple[str, ...] = ("off", "think", "max")


class RuntimeState(Enum):
    """Lifecycle of the current ``send_message`` invocation."""

    IDLE = "idle"
    STREAMING = "streaming"
    TOOL_EXECUTING = "tool_executing"
    COMPLETE = "complete"
    ERROR = "error"


_BUSY_STATES = frozenset({RuntimeState.STREAMING, RuntimeState.TOOL_EXECUTING})


class AgentRuntime:
    """Multi-backend streaming agent runtime.

    Example:
        async with AgentRuntime(RuntimeConfig(workspace_root=Path.cwd())) as runtime:
            async for event in runtime.send_message("Summarize @release-notes"):
                print(event.to_dict())
    """

    def __init__(
        self,
        config: RuntimeConfig,
        *,
        settings: RuntimeSettings | None = None,
        credentials: CredentialResolver | None = None,
        sources: Iterable[Source] = (),
        client_factory: RemoteClientFactory | None = None,
        skill_loader: SkillLoader | None = None,
        http_client: httpx.AsyncClient | None = None,
        subprocess_adapter: CodexSubprocessAdapter | None = None,
    ) -> None:
        """Initialize the runtime.

        Args:
            config: Workspace, session, model and thinking level.
            settings: Endpoint and loop settings; defaults apply when omitted.
            credentials: Resolver for API keys; environment variables by default.
            sources: Every tool source the runtime may use.
            client_factory: Creates remote tool clients on first use.
            skill_loader: Returns the skills of a workspace root.
            http_client: Shared HTTP client; one is created (and owned) if omitted.
            subprocess_adapter: CLI bridge; built from ``settings`` if omitted.
        """
        self._config = config
        self._settings = settings or RuntimeSettings()
        self._credentials = credentials if credentials is not None else EnvCredentialResolver()
        self._skill_loader = skill_loader or load_workspace_skills
        self._model = config.model or self._settings.default_model
        self._thinking_level: ThinkingLevel = config.thinking_level
        self._history: list[Message] = []
        self._active_slugs: tuple[str, ...] | None = None
        self._router = ToolDispatchRouter(sources, ToolClientRegistry(client_factory))
        self._chat = ChatStreamClient(
            http_client=http_client,
            request_timeout=self._settings.request_timeout,
            debug_logging=self._settings.debug_logging,
        )
        self._subprocess = subprocess_adapter or CodexSubprocessAdapter(
            executable=self._settings.subprocess_executable,
            grace_seconds=self._settings.subprocess_grace_seconds,
        )
        self._state = RuntimeState.IDLE
        self._signal: AbortSignal | None = None
        self._closed = False

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------
    @property
    def config(self) -> RuntimeConfig:
        return self._config

    @property
    def settings(self) -> RuntimeSettings:
        return self._settings

    @property
    def model(self) -> str:
        return self._model

    @property
    def thinking_level(self) -> ThinkingLevel:
        return self._thinking_level

    @property
    def state(self) -> RuntimeState:
        return self._state

    @property
    def session_id(self) -> str | None:
        session = self._config.session
        return session.id if session is not None else None

    @property
    def workspace_root(self) -> Path:
        return self._config.workspace_root

    @property
    def history(self) -> tuple[Message, ...]:
        """Snapshot of the persisted conversation history."""
        return tuple(self._history)

    @property
    def active_sources(self) -> tuple[str, ...] | None:
        return self._active_slugs

    @property
    def router(self) -> ToolDispatchRouter:
        return self._router

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------
    def set_model(self, model_id: str) -> None:
        """Switch models; the backend is re-selected on the next message.

        Raises:
            ValueError: If ``model_id`` is empty.
        """
        backend = select_backend(model_id)
        self._model = model_id.strip()
        LOGGER.debug("Model set to %s (%s)", self._model, backend.value)

    def set_thinking_level(self, level: ThinkingLevel) -> None:
        if level not in THINKING_LEVELS:
            raise ValueError(f"Unknown thinking level: {level!r}")
        self._thinking_level = level

    def set_all_sources(self, sources: Iterable[Source]) -> None:
        """Replace the known sources; cached clients for dropped slugs stay open until close."""
        self._router.set_sources(sources)

    def set_active_sources(self, slugs: Sequence[str] | None) -> None:
        """Limit tools to ``slugs``; None re-enables every known source."""
        self._active_slugs = tuple(slugs) if slugs is not None else None

    def clear_history(self) -> None:
        if self._state in _BUSY_STATES:
            raise RuntimeError("Cannot clear history while a message is in flight")
        self._history.clear()

    def stop(self, reason: str = "stopped by user") -> None:
        """Abort the in-flight invocation, if any."""
        if self._signal is not None:
            self._signal.abort(reason)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    async def aclose(self) -> None:
        """Close cached tool clients and the owned HTTP client."""
        if self._closed:
            return
        self._closed = True
        self.stop("runtime closed")
        await self._router.clients.close_all()
        await self._chat.aclose()

    async def __aenter__(self) -> "AgentRuntime":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    # Messaging
    # ------------------------------------------------------------------
    async def send_message(
        self,
        text: str,
        *,
        signal: AbortSignal | None = None,
    ) -> AsyncIterator[RuntimeEvent]:
        """Send ``text`` and stream the resulting events.

        Every failure surfaces as exactly one :class:`ErrorEvent`; success
        ends with :class:`CompleteEvent`; an abort ends the stream with
        neither.

        Args:
            text: The user message.
            signal: Optional abort signal; :meth:`stop` fires it too.
        """
        if self._closed:
            raise RuntimeError("AgentRuntime is closed")
        if self._state in _BUSY_STATES:
            raise RuntimeError("A message is already in flight")

        signal = signal or AbortSignal()
        self._signal = signal
        self._state = RuntimeState.STREAMING
        self._history.append(Message.user(text))
        LOGGER.debug("send_message via model %s (%d message(s) in history)", self._model, len(self._history))

        try:
            backend = select_backend(self._model)
            profile = profile_for(backend, self._settings)
            skill_messages = await self._resolve_skills(text)
            if backend is Backend.SUBPROCESS:
                events = self._run_subprocess(skill_messages, signal)
            else:
                events = self._run_rounds(profile, skill_messages, signal)
            async with contextlib.aclosing(events) as pending:
                async for event in pending:
                    yield event
        except AbortedError as exc:
            LOGGER.info("Message aborted: %s", exc.message)
            self._state = RuntimeState.IDLE
        except SwitchyardError as exc:
            LOGGER.warning("Message failed (%s): %s", exc.error_code, exc.message)
            self._state = RuntimeState.ERROR
            yield ErrorEvent(message=exc.message)
        except Exception as exc:
            LOGGER.exception("Unexpected failure while handling message")
            self._state = RuntimeState.ERROR
            yield ErrorEvent(message=f"Unexpected error: {exc}")
        finally:
            if self._state in _BUSY_STATES:
                self._state = RuntimeState.IDLE
            if self._signal is signal:
                self._signal = None

    async def _resolve_skills(self, text: str) -> list[Message]:
        if not extract_mentions(text):
            return []
        try:
            loaded = self._skill_loader(self._config.workspace_root)
            if inspect.isawaitable(loaded):
                loaded = await loaded
        except Exception:  # noqa: BLE001 - skills are optional context
            LOGGER.warning("Failed to load workspace skills", exc_info=True)
            return []
        messages = build_skill_messages(text, loaded)
        if messages:
            LOGGER.debug("Injecting %d skill message(s)", len(messages))
        return messages

    def _request_messages(self, injected: Sequence[Message] = ()) -> list[Message]:
        """History with ``injected`` placed just before the newest user message."""
        if not injected:
            return list(self._history)
        return [*self._history[:-1], *injected, self._history[-1]]

    async def _resolve_credential(self, profile: BackendProfile) -> str:
        kind = profile.credential_kind
        if kind is None:
            return ""
        value: Any = self._credentials.get_credential(kind)
        if inspect.isawaitable(value):
            value = await value
        if not value:
            env_name = DEFAULT_ENV_VARS.get(kind)
            hint = f" Set {env_name} or store the key in the credential vault." if env_name else ""
            raise AuthError(
                message=f"No {profile.provider} API key configured.{hint}",
                credential_kind=kind,
            )
        return str(value)

    async def _run_subprocess(
        self, skill_messages: Sequence[Message], signal: AbortSignal
    ) -> AsyncIterator[RuntimeEvent]:
        prompt = flatten_transcript(self._request_messages(skill_messages))
        stream = self._subprocess.stream(
            prompt,
            subprocess_model_name(self._model),
            cwd=self._config.workspace_root,
            signal=signal,
        )
        async with contextlib.aclosing(aiter(stream)) as events:
            async for event in events:
                yield event

        result = stream.result
        if result is None or result.had_error:
            self._state = RuntimeState.ERROR
            return
        self._history.append(Message.assistant(result.content))
        yield TextComplete(text=result.content, is_intermediate=False, turn_id=f"turn_{uuid.uuid4().hex[:12]}")
        self._state = RuntimeState.COMPLETE
        yield CompleteEvent()

    async def _run_rounds(
        self,
        profile: BackendProfile,
        skill_messages: Sequence[Message],
        signal: AbortSignal,
    ) -> AsyncIterator[RuntimeEvent]:
        credential = await self._resolve_credential(profile)
        max_rounds = max(1, min(self._settings.max_tool_rounds, MAX_TOOL_ROUNDS))

        for round_index in range(max_rounds):
            tools = await self._router.get_tool_definitions(self._active_slugs)
            messages = self._request_messages(skill_messages if round_index == 0 else ())
            LOGGER.debug("Round %d with %d tool(s)", round_index + 1, len(tools))

            self._state = RuntimeState.STREAMING
            stream = self._chat.stream_chat(
                profile,
                credential,
                messages,
                model=self._model,
                tools=tools,
                thinking_level=self._thinking_level,
                signal=signal,
            )
            async with contextlib.aclosing(aiter(stream)) as deltas:
                async for delta in deltas:
                    yield delta
            result = stream.result
            assert result is not None

            self._history.append(Message.assistant(result.content, result.tool_calls))
            yield TextComplete(
                text=result.content,
                is_intermediate=result.has_tool_calls,
                turn_id=result.turn_id,
            )
            if not result.has_tool_calls:
                self._state = RuntimeState.COMPLETE
                yield CompleteEvent()
                return

            self._state = RuntimeState.TOOL_EXECUTING
            for call in result.tool_calls:
                async for event in self._execute_tool_call(call, result.turn_id):
                    yield event

        LOGGER.warning("Reached max tool rounds (%d) with tool calls pending", max_rounds)
        raise RoundOverflowError(rounds=max_rounds)

    async def _execute_tool_call(self, call: ToolCall, turn_id: str) -> AsyncIterator[RuntimeEvent]:
        arguments: dict[str, Any] = {}
        error: str | None = None
        try:
            arguments = call.parse_arguments()
        except ValueError as exc:
            error = f"Invalid arguments for {call.name}: {exc}"

        yield ToolStart(tool_use_id=call.id, tool_name=call.name, input=arguments, turn_id=turn_id)

        output = ""
        if error is None:
            try:
                output = await self._router.execute_tool_call(call.name, arguments)
            except SwitchyardError as exc:
                if exc.terminal:
                    raise
                error = exc.message

        if error is not None:
            LOGGER.info("Tool %s failed: %s", call.name, error)
            yield ToolResultEvent(
                tool_use_id=call.id, result=error, is_error=True, input=arguments, turn_id=turn_id
            )
            self._history.append(Message.tool(f"Error: {error}", call.id))
            return

        yield ToolResultEvent(
            tool_use_id=call.id, result=output, is_error=False, input=arguments, turn_id=turn_id
        )
        self._history.append(Message.tool(output, call.id))
