"""Standardized error types for the agent runtime.

Every failure the runtime can surface maps onto one class here. Tool-local
failures (``ToolExecutionError``) are recovered per call; everything raised by
a model transport is terminal for the ``send_message`` invocation.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar

__all__ = [
    "ErrorCode",
    "SwitchyardError",
    "AuthError",
    "TransportError",
    "TransportHTTPError",
    "StreamParseError",
    "ToolExecutionError",
    "UnknownToolError",
    "RoundOverflowError",
    "ROUND_OVERFLOW_MESSAGE",
    "ProcessExitError",
    "AbortedError",
    "truncate_text",
]


# -----------------------------------------------------------------------------
# Error Code Constants
# -----------------------------------------------------------------------------


class ErrorCode:
    """Constants for machine-readable error codes."""

    AUTH_MISSING = "auth_missing"
    TRANSPORT_FAILED = "transport_failed"
    HTTP_STATUS = "http_status"
    STREAM_PARSE = "stream_parse"
    TOOL_FAILED = "tool_failed"
    UNKNOWN_TOOL = "unknown_tool"
    ROUND_OVERFLOW = "round_overflow"
    PROCESS_EXIT = "process_exit"
    ABORTED = "aborted"
    INTERNAL_ERROR = "internal_error"


def truncate_text(text: str, limit: int) -> str:
    """Return ``text`` cut to ``limit`` characters with an ellipsis marker."""

    if limit <= 0 or len(text) <= limit:
        return text
    return text[:limit] + "..."


# -----------------------------------------------------------------------------
# Base Error Class
# -----------------------------------------------------------------------------


@dataclass
class SwitchyardError(Exception):
    """Base exception for runtime failures.

    Attributes:
        message: Human-readable error description.
        error_code: Machine-readable error identifier.
        details: Additional structured error information.
    """

    message: str
    error_code: str = ErrorCode.INTERNAL_ERROR
    details: dict[str, Any] = field(default_factory=dict)

    # Whether the failure ends the current send_message invocation.
    terminal: ClassVar[bool] = True

    def __post_init__(self) -> None:
        Exception.__init__(self, self.message)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a dictionary for logging or event payloads."""
        result: dict[str, Any] = {
            "error": self.error_code,
            "message": self.message,
        }
        if self.details:
            result["details"] = dict(self.details)
        return result

    def __str__(self) -> str:
        return self.message


# -----------------------------------------------------------------------------
# Credential Errors
# -----------------------------------------------------------------------------


@dataclass
class AuthError(SwitchyardError):
    """No credential is available for the selected backend."""

    error_code: str = ErrorCode.AUTH_MISSING
    credential_kind: str = ""


# -----------------------------------------------------------------------------
# Transport Errors
# -----------------------------------------------------------------------------


@dataclass
class TransportError(SwitchyardError):
    """A model call failed inside its transport.

    The message is always prefixed with the provider name so the UI can show
    it verbatim.
    """

    error_code: str = ErrorCode.TRANSPORT_FAILED
    provider: str = ""

    @classmethod
    def from_provider(cls, provider: str, message: str, **kwargs: Any) -> "TransportError":
        return cls(message=f"{provider} error: {message}", provider=provider, **kwargs)


@dataclass
class TransportHTTPError(TransportError):
    """Non-2xx HTTP status or a response without a body."""

    error_code: str = ErrorCode.HTTP_STATUS
    status_code: int = 0
    body: str = ""

    @classmethod
    def from_response(
        cls,
        provider: str,
        status_code: int,
        body: str,
        *,
        limit: int = 2000,
    ) -> "TransportHTTPError":
        snippet = truncate_text(body.strip(), limit)
        return cls(
            message=f"{provider} API error: {status_code} {snippet}".rstrip(),
            provider=provider,
            status_code=status_code,
            body=snippet,
        )


@dataclass
class StreamParseError(SwitchyardError):
    """A single streamed chunk could not be decoded; never terminal."""

    error_code: str = ErrorCode.STREAM_PARSE
    payload: str = ""

    terminal: ClassVar[bool] = False


@dataclass
class ProcessExitError(TransportError):
    """The CLI bridge exited non-zero without reporting an explicit error."""

    error_code: str = ErrorCode.PROCESS_EXIT
    exit_code: int | None = None


@dataclass
class AbortedError(SwitchyardError):
    """The caller's abort signal fired while a transport was in flight."""

    error_code: str = ErrorCode.ABORTED


# -----------------------------------------------------------------------------
# Tool Errors
# -----------------------------------------------------------------------------


@dataclass
class ToolExecutionError(SwitchyardError):
    """A tool handler or remote call failed, or reported ``isError``."""

    error_code: str = ErrorCode.TOOL_FAILED
    tool_name: str = ""

    terminal: ClassVar[bool] = False


@dataclass
class UnknownToolError(ToolExecutionError):
    """The synthesized tool name is in neither mapping table."""

    error_code: str = ErrorCode.UNKNOWN_TOOL

    @classmethod
    def for_name(cls, tool_name: str) -> "UnknownToolError":
        return cls(message=f"Unknown tool: {tool_name}", tool_name=tool_name)


# -----------------------------------------------------------------------------
# Orchestration Errors
# -----------------------------------------------------------------------------


ROUND_OVERFLOW_MESSAGE = "Too many tool call rounds; aborting to avoid infinite loop."


@dataclass
class RoundOverflowError(SwitchyardError):
    """The round cap was reached while tool calls were still pending."""

    message: str = ROUND_OVERFLOW_MESSAGE
    error_code: str = ErrorCode.ROUND_OVERFLOW
    rounds: int = 0
