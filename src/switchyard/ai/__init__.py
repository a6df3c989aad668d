"""Streaming agent runtime, transports and tool dispatch."""

from .backends import Backend, BackendProfile, profile_for, select_backend
from .cancellation import AbortSignal
from .client import ChatStream, ChatStreamClient, SSEDecoder
from .dispatch import ToolClientRegistry, ToolDispatchRouter, synthesize_tool_name
from .events import (
    CompleteEvent,
    ErrorEvent,
    RuntimeEvent,
    TextComplete,
    TextDelta,
    ToolResultEvent,
    ToolStart,
)
from .runtime import AgentRuntime, RuntimeState
from .sources import Source
from .subprocess_backend import CodexSubprocessAdapter, flatten_transcript
from .tool_calls import ToolCallAggregator
from .types import Message, RuntimeConfig, SessionRef, ToolCall, ToolDefinition, ToolResult

__all__ = [
    "AgentRuntime",
    "RuntimeState",
    "RuntimeConfig",
    "SessionRef",
    "AbortSignal",
    "Backend",
    "BackendProfile",
    "select_backend",
    "profile_for",
    "ChatStream",
    "ChatStreamClient",
    "SSEDecoder",
    "ToolCallAggregator",
    "CodexSubprocessAdapter",
    "flatten_transcript",
    "Source",
    "ToolClientRegistry",
    "ToolDispatchRouter",
    "synthesize_tool_name",
    "Message",
    "ToolCall",
    "ToolDefinition",
    "ToolResult",
    "RuntimeEvent",
    "TextDelta",
    "TextComplete",
    "ToolStart",
    "ToolResultEvent",
    "ErrorEvent",
    "CompleteEvent",
]
