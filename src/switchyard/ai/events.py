"""Events emitted by the runtime toward the UI.

Each event is a frozen dataclass tagged by ``type``. ``to_dict`` produces the
camelCase wire shape consumed by event sinks.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar, Literal, Mapping, Union

__all__ = [
    "EventType",
    "TextDelta",
    "TextComplete",
    "ToolStart",
    "ToolResultEvent",
    "ErrorEvent",
    "CompleteEvent",
    "RuntimeEvent",
]

EventType = Literal["text_delta", "text_complete", "tool_start", "tool_result", "error", "complete"]


@dataclass(slots=True, frozen=True)
class TextDelta:
    text: str

    type: ClassVar[str] = "text_delta"

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "text": self.text}


@dataclass(slots=True, frozen=True)
class TextComplete:
    """Full assistant text of one model call.

    ``is_intermediate`` is True when the same call also requested tools, so
    more text will follow in a later round.
    """

    text: str
    is_intermediate: bool
    turn_id: str

    type: ClassVar[str] = "text_complete"

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "text": self.text,
            "isIntermediate": self.is_intermediate,
            "turnId": self.turn_id,
        }


@dataclass(slots=True, frozen=True)
class ToolStart:
    tool_use_id: str
    tool_name: str
    input: Mapping[str, Any] = field(default_factory=dict)
    turn_id: str = ""

    type: ClassVar[str] = "tool_start"

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "toolUseId": self.tool_use_id,
            "toolName": self.tool_name,
            "input": dict(self.input),
            "turnId": self.turn_id,
        }


@dataclass(slots=True, frozen=True)
class ToolResultEvent:
    tool_use_id: str
    result: str
    is_error: bool = False
    input: Mapping[str, Any] = field(default_factory=dict)
    turn_id: str = ""

    type: ClassVar[str] = "tool_result"

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "toolUseId": self.tool_use_id,
            "result": self.result,
            "isError": self.is_error,
            "input": dict(self.input),
            "turnId": self.turn_id,
        }


@dataclass(slots=True, frozen=True)
class ErrorEvent:
    message: str

    type: ClassVar[str] = "error"

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "message": self.message}


@dataclass(slots=True, frozen=True)
class CompleteEvent:
    type: ClassVar[str] = "complete"

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type}


RuntimeEvent = Union[TextDelta, TextComplete, ToolStart, ToolResultEvent, ErrorEvent, CompleteEvent]
