"""Registry of in-process tools for one local source.

Local sources expose their tools through a :class:`ToolRegistry`. The
dispatch router reads :attr:`ToolRegistry.registered_tools` after calling
:meth:`ToolRegistry.ensure_initialized`, so registries can populate
themselves lazily on first use.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Mapping

from .types import AsyncToolHandler, SimpleTool, Tool, ToolHandler, ToolSpec

__all__ = [
    "ToolRegistry",
    "ToolRegistration",
    "DuplicateToolError",
]

LOGGER = logging.getLogger(__name__)

RegistryInitializer = Callable[["ToolRegistry"], "Awaitable[None] | None"]


# -----------------------------------------------------------------------------
# Exceptions
# -----------------------------------------------------------------------------


class DuplicateToolError(Exception):
    """Raised when a tool name is registered twice without ``allow_override``."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Tool '{name}' is already registered")


# -----------------------------------------------------------------------------
# Tool Registration
# -----------------------------------------------------------------------------


@dataclass(slots=True)
class ToolRegistration:
    """Record of a registered tool.

    Attributes:
        name: Native tool name.
        tool: The tool implementation.
        enabled: Whether the tool is offered to the model.
        metadata: Free-form registration metadata.
    """

    name: str
    tool: Tool
    enabled: bool = True
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def spec(self) -> ToolSpec:
        return self.tool.spec

    @property
    def description(self) -> str:
        return self.tool.spec.description

    @property
    def input_schema(self) -> dict[str, Any]:
        return self.tool.spec.input_schema

    @property
    def handler(self) -> Callable[[Mapping[str, Any]], Awaitable[Any]]:
        return self.tool.execute


# -----------------------------------------------------------------------------
# Tool Registry
# -----------------------------------------------------------------------------


class ToolRegistry:
    """Registry for registering, toggling and listing local tools.

    Example:
        registry = ToolRegistry()
        registry.register_function(
            spec=ToolSpec(name="greet", description="Greet"),
            handler=lambda args: f"Hello, {args['name']}!",
        )
        await registry.ensure_initialized()
        registration = registry.registered_tools["greet"]
        result = await registration.handler({"name": "World"})
    """

    def __init__(self, initializer: RegistryInitializer | None = None) -> None:
        self._tools: dict[str, ToolRegistration] = {}
        self._initializer = initializer
        self._initialized = initializer is None
        self._init_lock = asyncio.Lock()

    @property
    def registered_tools(self) -> Mapping[str, ToolRegistration]:
        """Read-only view of every registration, enabled or not."""
        return MappingProxyType(self._tools)

    async def ensure_initialized(self) -> None:
        """Run the lazy initializer once; concurrent callers wait for it."""
        if self._initialized:
            return
        async with self._init_lock:
            if self._initialized:
                return
            assert self._initializer is not None
            outcome = self._initializer(self)
            if inspect.isawaitable(outcome):
                await outcome
            self._initialized = True
            LOGGER.debug("Initialized tool registry with %d tool(s)", len(self._tools))

    def register(
        self,
        tool: Tool,
        *,
        enabled: bool = True,
        allow_override: bool = False,
        metadata: Mapping[str, Any] | None = None,
    ) -> ToolRegistration:
        """Register a tool implementation.

        Raises:
            DuplicateToolError: If the name is taken and ``allow_override`` is False.
        """
        name = tool.name
        if name in self._tools and not allow_override:
            raise DuplicateToolError(name)

        registration = ToolRegistration(
            name=name,
            tool=tool,
            enabled=enabled,
            metadata=dict(metadata) if metadata else {},
        )
        self._tools[name] = registration
        LOGGER.debug("Registered tool: %s", name)
        return registration

    def register_function(
        self,
        spec: ToolSpec,
        handler: ToolHandler | AsyncToolHandler,
        *,
        enabled: bool = True,
        allow_override: bool = False,
        metadata: Mapping[str, Any] | None = None,
    ) -> ToolRegistration:
        """Register a sync or async function as a tool.

        Args:
            spec: Tool specification.
            handler: Callable receiving the decoded argument mapping.
            enabled: Whether the tool is offered to the model.
            allow_override: Replace an existing registration of the same name.
            metadata: Additional metadata.

        Returns:
            The tool registration record.
        """
        return self.register(
            SimpleTool(spec=spec, handler=handler),
            enabled=enabled,
            allow_override=allow_override,
            metadata=metadata,
        )

    def list_tools(self, *, include_disabled: bool = False) -> list[ToolSpec]:
        return [
            registration.spec
            for registration in self._tools.values()
            if registration.enabled or include_disabled
        ]

    def enable(self, name: str) -> bool:
        registration = self._tools.get(name)
        if registration is None:
            return False
        registration.enabled = True
        return True

    def disable(self, name: str) -> bool:
        registration = self._tools.get(name)
        if registration is None:
            return False
        registration.enabled = False
        return True

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools
