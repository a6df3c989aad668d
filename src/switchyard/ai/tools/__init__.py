"""In-process tool support for local sources.

Example:
    from switchyard.ai.tools import ToolRegistry, ToolSpec

    registry = ToolRegistry()
    registry.register_function(
        spec=ToolSpec(name="greet", description="Greet someone"),
        handler=lambda args: f"Hello, {args.get('name', 'World')}!",
    )
"""

from .types import (
    Tool,
    ToolSpec,
    ToolHandler,
    AsyncToolHandler,
    SimpleTool,
)

from .registry import (
    ToolRegistry,
    ToolRegistration,
    DuplicateToolError,
)

__all__ = [
    # types.py
    "Tool",
    "ToolSpec",
    "ToolHandler",
    "AsyncToolHandler",
    "SimpleTool",
    # registry.py
    "ToolRegistry",
    "ToolRegistration",
    "DuplicateToolError",
]
