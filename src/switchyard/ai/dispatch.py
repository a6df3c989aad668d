"""Tool dispatch across remote and local sources.

Each round the router lists the tools of the intended sources, publishes
them under synthesized ``slug__tool`` names and remembers which source and
native name each synthetic name maps back to. Execution looks the name up in
that table, calls the owning source and normalizes whatever comes back into a
:class:`~switchyard.ai.types.ToolResult`.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Sequence

from .errors import SwitchyardError, ToolExecutionError, UnknownToolError
from .sources import RemoteClientFactory, RemoteToolClient, Source
from .types import DEFAULT_PARAMETERS_SCHEMA, ContentBlock, ToolDefinition, ToolResult

__all__ = [
    "MAX_TOOL_NAME_LENGTH",
    "MAX_RESULT_CHARS",
    "synthesize_tool_name",
    "normalize_tool_result",
    "ToolMapping",
    "ToolClientRegistry",
    "ToolDispatchRouter",
]

LOGGER = logging.getLogger(__name__)

MAX_TOOL_NAME_LENGTH = 64
MAX_RESULT_CHARS = 8000
_INVALID_NAME_CHARS = re.compile(r"[^A-Za-z0-9_-]")


# -----------------------------------------------------------------------------
# Naming
# -----------------------------------------------------------------------------


def synthesize_tool_name(source_slug: str, tool_name: str) -> str:
    """Return the model-facing name for ``tool_name`` of ``source_slug``.

    Characters outside ``[A-Za-z0-9_-]`` become ``_`` and the result is cut to
    64 characters, the limit chat-completions APIs enforce.

    Example:
        synthesize_tool_name("git hub", "search.issues")  # "git_hub__search_issues"
    """
    combined = f"{source_slug}__{tool_name}"
    return _INVALID_NAME_CHARS.sub("_", combined)[:MAX_TOOL_NAME_LENGTH]


# -----------------------------------------------------------------------------
# Result normalization
# -----------------------------------------------------------------------------


def _stringify(raw: Any) -> str:
    if isinstance(raw, str):
        return raw
    try:
        return json.dumps(raw, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        return str(raw)


def _capped(raw: Any) -> str:
    return _stringify(raw)[:MAX_RESULT_CHARS]


def _coerce_block(item: Any) -> ContentBlock:
    if isinstance(item, ContentBlock):
        return item
    if isinstance(item, Mapping):
        return ContentBlock.from_mapping(item)
    if isinstance(item, str):
        return ContentBlock.of_text(item)
    block_type = getattr(item, "type", None)
    if isinstance(block_type, str):
        text = getattr(item, "text", None)
        return ContentBlock(type=block_type, text=text if isinstance(text, str) else None)
    return ContentBlock.of_text(_stringify(item))


def _coerce_blocks(content: Any) -> tuple[ContentBlock, ...]:
    if isinstance(content, str):
        return (ContentBlock.of_text(content),)
    return tuple(_coerce_block(item) for item in content)


def normalize_tool_result(raw: Any) -> ToolResult:
    """Coerce a raw handler or remote return value into a :class:`ToolResult`.

    Accepted shapes, in order: a ``ToolResult``; a string; a mapping whose
    ``content`` is a list (``isError``/``is_error`` flag the failure); an
    object with a ``content`` attribute; anything else is JSON-dumped into a
    single text block capped at ``MAX_RESULT_CHARS``.
    """
    if isinstance(raw, ToolResult):
        return raw
    if isinstance(raw, str):
        return ToolResult.of_text(raw)
    if isinstance(raw, Mapping):
        content = raw.get("content")
        if isinstance(content, list):
            is_error = raw.get("isError", raw.get("is_error", False))
            return ToolResult(content=_coerce_blocks(content), is_error=bool(is_error))
        return ToolResult.of_text(_capped(raw))
    content = getattr(raw, "content", None)
    if isinstance(content, (str, list, tuple)):
        is_error = getattr(raw, "isError", getattr(raw, "is_error", False))
        return ToolResult(content=_coerce_blocks(content), is_error=bool(is_error))
    return ToolResult.of_text(_capped(raw))


def _descriptor_field(descriptor: Any, *names: str) -> Any:
    for name in names:
        if isinstance(descriptor, Mapping):
            value = descriptor.get(name)
        else:
            value = getattr(descriptor, name, None)
        if value is not None:
            return value
    return None


# -----------------------------------------------------------------------------
# Remote client cache
# -----------------------------------------------------------------------------


class ToolClientRegistry:
    """Lazily created remote clients, one per source slug.

    Owned by a single runtime; clients are shared across rounds and messages
    until :meth:`close_all`.
    """

    def __init__(self, factory: RemoteClientFactory | None = None) -> None:
        self._factory = factory
        self._clients: dict[str, RemoteToolClient] = {}
        self._lock = asyncio.Lock()

    def __contains__(self, slug: object) -> bool:
        return slug in self._clients

    def __len__(self) -> int:
        return len(self._clients)

    async def get_or_create(self, source: Source) -> RemoteToolClient:
        """Return the cached client for ``source``, creating it on first use.

        Raises:
            RuntimeError: If no client factory was configured.
        """
        async with self._lock:
            client = self._clients.get(source.slug)
            if client is not None:
                return client
            if self._factory is None:
                raise RuntimeError(f"No remote client factory configured for source '{source.slug}'")
            created = self._factory(source)
            if inspect.isawaitable(created):
                created = await created
            self._clients[source.slug] = created
            LOGGER.debug("Created remote tool client for source %s", source.slug)
            return created

    async def close_all(self) -> None:
        """Close every cached client; one failing close does not stop the rest."""
        async with self._lock:
            clients = list(self._clients.items())
            self._clients.clear()
        for slug, client in clients:
            try:
                outcome = client.close()
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception:  # noqa: BLE001 - each client closes independently
                LOGGER.warning("Failed to close tool client for source %s", slug, exc_info=True)


# -----------------------------------------------------------------------------
# Router
# -----------------------------------------------------------------------------


@dataclass(slots=True)
class ToolMapping:
    """Synthetic tool name -> (source slug, native tool name), per source kind."""

    remote: dict[str, tuple[str, str]] = field(default_factory=dict)
    local: dict[str, tuple[str, str]] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.remote) + len(self.local)


class ToolDispatchRouter:
    """Routes synthesized tool names to the source that owns them.

    Example:
        router = ToolDispatchRouter(sources, ToolClientRegistry(factory))
        definitions = await router.get_tool_definitions(["github"])
        text = await router.execute_tool_call("github__search", {"q": "bug"})
    """

    def __init__(
        self,
        sources: Iterable[Source] = (),
        client_registry: ToolClientRegistry | None = None,
    ) -> None:
        self._sources: dict[str, Source] = {}
        self.clients = client_registry if client_registry is not None else ToolClientRegistry()
        self.mapping = ToolMapping()
        self.set_sources(sources)

    @property
    def sources(self) -> tuple[Source, ...]:
        return tuple(self._sources.values())

    def set_sources(self, sources: Iterable[Source]) -> None:
        self._sources = {source.slug: source for source in sources}

    def _intended_sources(self, source_slugs: Sequence[str] | None) -> list[Source]:
        if source_slugs is None:
            return list(self._sources.values())
        intended: list[Source] = []
        seen: set[str] = set()
        for slug in source_slugs:
            if slug in seen:
                continue
            seen.add(slug)
            source = self._sources.get(slug)
            if source is None:
                LOGGER.warning("Skipping unknown tool source: %s", slug)
                continue
            intended.append(source)
        return intended

    async def get_tool_definitions(
        self, source_slugs: Sequence[str] | None = None
    ) -> list[ToolDefinition]:
        """List tools for the intended sources and rebuild the mapping tables.

        Args:
            source_slugs: Slugs to include; None means every known source.

        Returns:
            Definitions under synthesized names. Sources whose listing fails
            are logged and left out.
        """
        mapping = ToolMapping()
        definitions: list[ToolDefinition] = []
        for source in self._intended_sources(source_slugs):
            try:
                if source.is_local:
                    entries = await self._list_local(source)
                    table = mapping.local
                else:
                    entries = await self._list_remote(source)
                    table = mapping.remote
            except Exception:  # noqa: BLE001 - one broken source must not hide the rest
                LOGGER.warning("Failed to list tools for source %s", source.slug, exc_info=True)
                continue
            for native_name, definition in entries:
                if definition.name in table:
                    LOGGER.debug("Tool name collision on %s; keeping the later tool", definition.name)
                table[definition.name] = (source.slug, native_name)
                definitions.append(definition)
        self.mapping = mapping
        LOGGER.debug("Prepared %d tool definition(s)", len(definitions))
        return definitions

    async def _list_remote(self, source: Source) -> list[tuple[str, ToolDefinition]]:
        client = await self.clients.get_or_create(source)
        entries: list[tuple[str, ToolDefinition]] = []
        for descriptor in await client.list_tools():
            native_name = _descriptor_field(descriptor, "name")
            if not native_name:
                continue
            schema = _descriptor_field(descriptor, "inputSchema", "input_schema", "parameters")
            description = _descriptor_field(descriptor, "description")
            entries.append(
                (
                    str(native_name),
                    ToolDefinition(
                        name=synthesize_tool_name(source.slug, str(native_name)),
                        description=str(description) if description else None,
                        parameters=dict(schema) if isinstance(schema, Mapping) else dict(DEFAULT_PARAMETERS_SCHEMA),
                    ),
                )
            )
        return entries

    async def _list_local(self, source: Source) -> list[tuple[str, ToolDefinition]]:
        registry = source.registry
        if registry is None:
            raise RuntimeError(f"Local source '{source.slug}' has no tool registry")
        await registry.ensure_initialized()
        entries: list[tuple[str, ToolDefinition]] = []
        for native_name, registration in registry.registered_tools.items():
            if not getattr(registration, "enabled", True):
                continue
            schema = getattr(registration, "input_schema", None)
            description = getattr(registration, "description", None)
            entries.append(
                (
                    native_name,
                    ToolDefinition(
                        name=synthesize_tool_name(source.slug, native_name),
                        description=description or None,
                        parameters=dict(schema) if isinstance(schema, Mapping) else dict(DEFAULT_PARAMETERS_SCHEMA),
                    ),
                )
            )
        return entries

    async def execute_tool_call(self, name: str, arguments: Mapping[str, Any]) -> str:
        """Execute the tool published as ``name`` and return its text.

        Raises:
            UnknownToolError: If ``name`` is in neither mapping table.
            ToolExecutionError: If the tool raised or reported an error.
            SwitchyardError: Raised by the tool itself; passed through unchanged.
        """
        if name in self.mapping.local:
            slug, native_name = self.mapping.local[name]
            raw = await self._call_local(name, slug, native_name, arguments)
        elif name in self.mapping.remote:
            slug, native_name = self.mapping.remote[name]
            raw = await self._call_remote(name, slug, native_name, arguments)
        else:
            raise UnknownToolError.for_name(name)

        result = normalize_tool_result(raw)
        if result.is_error:
            raise ToolExecutionError(
                message=result.text or f"Tool {name} reported an error",
                tool_name=name,
            )
        if result.has_text:
            return result.text
        return _capped(raw)

    async def _call_local(
        self, name: str, slug: str, native_name: str, arguments: Mapping[str, Any]
    ) -> Any:
        source = self._sources.get(slug)
        registry = source.registry if source is not None else None
        registration = registry.registered_tools.get(native_name) if registry is not None else None
        if registration is None:
            raise UnknownToolError.for_name(name)
        LOGGER.debug("Executing local tool %s (%s/%s)", name, slug, native_name)
        try:
            outcome = registration.handler(arguments)
            if inspect.isawaitable(outcome):
                outcome = await outcome
        except SwitchyardError:
            raise
        except Exception as exc:
            raise ToolExecutionError(message=str(exc) or type(exc).__name__, tool_name=name) from exc
        return outcome

    async def _call_remote(
        self, name: str, slug: str, native_name: str, arguments: Mapping[str, Any]
    ) -> Any:
        source = self._sources.get(slug)
        if source is None:
            raise UnknownToolError.for_name(name)
        LOGGER.debug("Executing remote tool %s (%s/%s)", name, slug, native_name)
        try:
            client = await self.clients.get_or_create(source)
            return await client.call_tool(native_name, dict(arguments))
        except SwitchyardError:
            raise
        except Exception as exc:
            raise ToolExecutionError(message=str(exc) or type(exc).__name__, tool_name=name) from exc
