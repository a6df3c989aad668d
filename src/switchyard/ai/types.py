"""Core type definitions for the agent runtime.

Messages, tool calls, tool definitions and the normalized tool-result
contract. All types are frozen so transports and dispatch can hand them back
to the runtime without sharing mutable state.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal, Mapping, Sequence, Union

from openai.types.chat import ChatCompletionMessageParam, ChatCompletionToolParam

__all__ = [
    "MessageRole",
    "ThinkingLevel",
    "ContentBlock",
    "MessageContent",
    "Message",
    "ToolCall",
    "ToolDefinition",
    "ToolResult",
    "ModelTurnResult",
    "SessionRef",
    "RuntimeConfig",
    "content_text",
    "DEFAULT_PARAMETERS_SCHEMA",
]

MessageRole = Literal["system", "user", "assistant", "tool"]
ThinkingLevel = Literal["off", "think", "max"]

DEFAULT_PARAMETERS_SCHEMA: Mapping[str, Any] = {"type": "object", "properties": {}}


# -----------------------------------------------------------------------------
# Content Blocks
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class ContentBlock:
    """Typed fragment of a message or tool result.

    Only ``text`` blocks carry text; other types (images, resources) are kept
    as opaque payloads so they survive round trips untouched.
    """

    type: str
    text: str | None = None
    data: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def of_text(cls, text: str) -> ContentBlock:
        return cls(type="text", text=text)

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> ContentBlock:
        block_type = str(payload.get("type") or "text")
        text = payload.get("text")
        extra = {key: value for key, value in payload.items() if key not in {"type", "text"}}
        return cls(type=block_type, text=str(text) if text is not None else None, data=extra)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"type": self.type, **self.data}
        if self.text is not None:
            payload["text"] = self.text
        return payload


MessageContent = Union[str, Sequence[ContentBlock]]


def content_text(content: MessageContent) -> str:
    """Return the plain text of ``content``, joining text blocks with newlines."""

    if isinstance(content, str):
        return content
    return "\n".join(block.text for block in content if block.type == "text" and block.text)


# -----------------------------------------------------------------------------
# Tool Calls
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class ToolCall:
    """A complete tool call requested by the model.

    Attributes:
        id: Provider-assigned call identifier, unique within a round.
        name: Synthesized tool name.
        arguments: Serialized JSON arguments exactly as streamed.
    """

    id: str
    name: str
    arguments: str = ""

    def parse_arguments(self) -> dict[str, Any]:
        """Decode ``arguments``; an empty string means no arguments.

        Raises:
            ValueError: If the arguments are not a JSON object.
        """
        raw = self.arguments.strip()
        if not raw:
            return {}
        decoded = json.loads(raw)
        if not isinstance(decoded, dict):
            raise ValueError(f"Tool arguments must be a JSON object, got {type(decoded).__name__}")
        return decoded

    def to_chat_param(self) -> dict[str, Any]:
        """Convert to the OpenAI assistant ``tool_calls`` entry shape."""
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.arguments},
        }


# -----------------------------------------------------------------------------
# Message Type
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class Message:
    """Immutable chat message held in conversation history.

    Attributes:
        role: The role of the message sender.
        content: Plain text or a list of content blocks.
        tool_call_id: ID linking a tool result to its call.
        tool_calls: Tool calls made by the assistant; only set when non-empty.
    """

    role: MessageRole
    content: MessageContent
    tool_call_id: str | None = None
    tool_calls: tuple[ToolCall, ...] | None = None

    @property
    def text(self) -> str:
        return content_text(self.content)

    def to_chat_param(self) -> ChatCompletionMessageParam:
        """Convert to OpenAI's ChatCompletionMessageParam format."""
        if isinstance(self.content, str):
            content: Any = self.content
        else:
            content = [block.to_dict() for block in self.content]
        payload: dict[str, Any] = {"role": self.role, "content": content}
        if self.tool_call_id is not None:
            payload["tool_call_id"] = self.tool_call_id
        if self.tool_calls:
            payload["tool_calls"] = [call.to_chat_param() for call in self.tool_calls]
        return payload  # type: ignore[return-value]

    @classmethod
    def system(cls, content: str) -> Message:
        """Create a system message."""
        return cls(role="system", content=content)

    @classmethod
    def user(cls, content: MessageContent) -> Message:
        """Create a user message."""
        return cls(role="user", content=content)

    @classmethod
    def assistant(cls, content: str, tool_calls: Sequence[ToolCall] | None = None) -> Message:
        """Create an assistant message; ``tool_calls`` is dropped when empty."""
        return cls(
            role="assistant",
            content=content,
            tool_calls=tuple(tool_calls) if tool_calls else None,
        )

    @classmethod
    def tool(cls, content: str, tool_call_id: str) -> Message:
        """Create a tool result message."""
        return cls(role="tool", content=content, tool_call_id=tool_call_id)


# -----------------------------------------------------------------------------
# Tool Definitions
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class ToolDefinition:
    """A tool offered to the model for one round.

    Attributes:
        name: Synthesized tool name (``slug__tool``).
        description: Optional human-readable description.
        parameters: JSON schema for the arguments.
    """

    name: str
    description: str | None = None
    parameters: Mapping[str, Any] = field(default_factory=dict)

    def to_openai_tool(self) -> ChatCompletionToolParam:
        """Convert to the OpenAI tool definition format."""
        function: dict[str, Any] = {
            "name": self.name,
            "parameters": dict(self.parameters) if self.parameters else dict(DEFAULT_PARAMETERS_SCHEMA),
        }
        if self.description:
            function["description"] = self.description
        return {"type": "function", "function": function}  # type: ignore[return-value]


# -----------------------------------------------------------------------------
# Tool Results
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class ToolResult:
    """Normalized outcome of a tool execution.

    Both execution pathways converge on this shape before the runtime sees
    the result.
    """

    content: tuple[ContentBlock, ...] = ()
    is_error: bool = False

    @property
    def text(self) -> str:
        return content_text(self.content)

    @property
    def has_text(self) -> bool:
        return any(block.type == "text" for block in self.content)

    @classmethod
    def of_text(cls, text: str, *, is_error: bool = False) -> ToolResult:
        return cls(content=(ContentBlock.of_text(text),), is_error=is_error)


# -----------------------------------------------------------------------------
# Model Turn Result
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class ModelTurnResult:
    """Aggregate produced once a model stream ends.

    Attributes:
        content: Concatenated assistant text.
        tool_calls: Finalized tool calls in index order.
        turn_id: Identifier correlating every event of this model call.
    """

    content: str
    tool_calls: tuple[ToolCall, ...] = ()
    turn_id: str = ""

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)


# -----------------------------------------------------------------------------
# Runtime Configuration
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class SessionRef:
    """Opaque reference to the session that owns a runtime."""

    id: str
    name: str | None = None


@dataclass(slots=True, frozen=True)
class RuntimeConfig:
    """Per-runtime configuration.

    Attributes:
        workspace_root: Root directory of the workspace (skills, cwd for CLIs).
        model: Selected model identifier.
        session: Optional session reference.
        thinking_level: Reasoning effort hint.
        headless: True when no interactive user is attached; the chat CLI then
            leaves SIGINT alone instead of mapping it to an abort.
    """

    workspace_root: Path
    model: str = "openai/gpt-4o"
    session: SessionRef | None = None
    thinking_level: ThinkingLevel = "think"
    headless: bool = False
