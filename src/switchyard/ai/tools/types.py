"""Types for in-process tools.

A tool is anything exposing a ``name``, a :class:`ToolSpec` and an async
``execute``. Plain functions become tools through :class:`SimpleTool`.
"""

from __future__ import annotations

import inspect
from dataclasses import dataclass, field
from typing import Any, Callable, Coroutine, Mapping, Protocol, runtime_checkable

from ..types import DEFAULT_PARAMETERS_SCHEMA, ToolDefinition

__all__ = [
    "ToolSpec",
    "ToolHandler",
    "AsyncToolHandler",
    "Tool",
    "SimpleTool",
]


# -----------------------------------------------------------------------------
# Tool Specification
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class ToolSpec:
    """Interface of a local tool as advertised to the model.

    Attributes:
        name: Native tool name, unique within its registry.
        description: Human-readable description of what the tool does.
        parameters: JSON Schema for the tool's arguments.
    """

    name: str
    description: str = ""
    parameters: Mapping[str, Any] = field(default_factory=dict)

    @property
    def input_schema(self) -> dict[str, Any]:
        return dict(self.parameters) if self.parameters else dict(DEFAULT_PARAMETERS_SCHEMA)

    def to_definition(self, name: str | None = None) -> ToolDefinition:
        """Return the model-facing definition, optionally under another name."""
        return ToolDefinition(
            name=name or self.name,
            description=self.description or None,
            parameters=self.input_schema,
        )


# -----------------------------------------------------------------------------
# Tool Handler Types
# -----------------------------------------------------------------------------

ToolHandler = Callable[[Mapping[str, Any]], Any]

AsyncToolHandler = Callable[[Mapping[str, Any]], Coroutine[Any, Any, Any]]


# -----------------------------------------------------------------------------
# Tool Protocol
# -----------------------------------------------------------------------------


@runtime_checkable
class Tool(Protocol):
    """Protocol for tool implementations."""

    @property
    def name(self) -> str:
        ...

    @property
    def spec(self) -> ToolSpec:
        ...

    async def execute(self, arguments: Mapping[str, Any]) -> Any:
        """Run the tool.

        Returns:
            Any value; the dispatch router normalizes it into a ToolResult.
        """
        ...


# -----------------------------------------------------------------------------
# Simple Tool Implementation
# -----------------------------------------------------------------------------


@dataclass
class SimpleTool:
    """Tool wrapping a plain callable, sync or async.

    Example:
        tool = SimpleTool(
            spec=ToolSpec(name="echo", description="Echo the input"),
            handler=lambda args: args.get("text", ""),
        )
    """

    spec: ToolSpec
    handler: ToolHandler | AsyncToolHandler

    @property
    def name(self) -> str:
        return self.spec.name

    async def execute(self, arguments: Mapping[str, Any]) -> Any:
        result = self.handler(arguments)
        if inspect.isawaitable(result):
            return await result
        return result
