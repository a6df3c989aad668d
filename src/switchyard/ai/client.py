"""Async streaming client for OpenAI-compatible chat-completions endpoints.

The client reads the raw byte stream itself: it reassembles line-delimited
Server-Sent-Events frames, decodes each ``data:`` payload as one chunk and
folds the chunk into running text plus an index-addressed tool-call map.
Backends that ignore ``stream: true`` and answer with a single JSON body are
handled by the same entry point.
"""

from __future__ import annotations

import json
import logging
import uuid
from typing import Any, AsyncIterator, Awaitable, Mapping, Sequence, TypeVar

import httpx

from .backends import Backend, BackendProfile
from .cancellation import AbortSignal
from .errors import (
    StreamParseError,
    TransportError,
    TransportHTTPError,
    truncate_text,
)
from .events import TextDelta
from .tool_calls import ToolCallAggregator
from .types import Message, ModelTurnResult, ThinkingLevel, ToolDefinition

__all__ = [
    "SSEDecoder",
    "ChatStream",
    "ChatStreamClient",
    "build_chat_payload",
    "parse_completion_body",
]

LOGGER = logging.getLogger(__name__)
T = TypeVar("T")

_DONE_SENTINEL = "[DONE]"
_ERROR_DUMP_LIMIT = 2000
_EVENT_STREAM = "text/event-stream"
_THINKING_EFFORT: Mapping[str, str | None] = {"off": None, "think": "medium", "max": "high"}


# -----------------------------------------------------------------------------
# SSE framing
# -----------------------------------------------------------------------------


class SSEDecoder:
    """Incremental Server-Sent-Events decoder.

    Bytes are buffered until a ``\\n`` arrives so that multi-byte characters
    split across network reads decode correctly. A blank line ends an event;
    the event's ``data:`` lines are joined with ``\\n`` into one payload.
    """

    def __init__(self) -> None:
        self._buffer = bytearray()
        self._data_lines: list[str] = []

    def feed(self, chunk: bytes) -> list[str]:
        """Consume ``chunk`` and return every payload it completed."""
        self._buffer.extend(chunk)
        payloads: list[str] = []
        while True:
            newline = self._buffer.find(b"\n")
            if newline < 0:
                break
            raw_line = bytes(self._buffer[:newline])
            del self._buffer[: newline + 1]
            payload = self._process_line(raw_line.decode("utf-8", errors="replace"))
            if payload is not None:
                payloads.append(payload)
        return payloads

    def flush(self) -> list[str]:
        """Drain a trailing unterminated line and event at end of stream."""
        payloads: list[str] = []
        if self._buffer:
            raw_line = bytes(self._buffer)
            self._buffer.clear()
            payload = self._process_line(raw_line.decode("utf-8", errors="replace"))
            if payload is not None:
                payloads.append(payload)
        payload = self._dispatch()
        if payload is not None:
            payloads.append(payload)
        return payloads

    def _process_line(self, line: str) -> str | None:
        if line.endswith("\r"):
            line = line[:-1]
        if not line:
            return self._dispatch()
        if line.startswith(":"):
            return None
        if line.startswith("data:"):
            value = line[5:]
            if value.startswith(" "):
                value = value[1:]
            self._data_lines.append(value)
        # event:, id: and retry: fields carry nothing chat-completions needs.
        return None

    def _dispatch(self) -> str | None:
        if not self._data_lines:
            return None
        payload = "\n".join(self._data_lines)
        self._data_lines = []
        return payload


# -----------------------------------------------------------------------------
# Chunk folding
# -----------------------------------------------------------------------------


def _new_turn_id() -> str:
    return f"turn_{uuid.uuid4().hex[:12]}"


def _error_message(error: Any) -> str:
    if isinstance(error, Mapping):
        message = error.get("message")
        if isinstance(message, str) and message:
            return message
    if isinstance(error, str) and error:
        return error
    try:
        dumped = json.dumps(error, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        dumped = repr(error)
    return truncate_text(dumped, _ERROR_DUMP_LIMIT)


class _TurnAccumulator:
    """Running state for one streamed model call."""

    def __init__(self, provider: str) -> None:
        self._provider = provider
        self._parts: list[str] = []
        self._tool_calls = ToolCallAggregator()
        self._turn_id = ""

    def decode(self, payload: str) -> Mapping[str, Any] | None:
        """Decode one SSE payload; None for sentinels and empty payloads.

        Raises:
            StreamParseError: If the payload is not a JSON object.
        """
        stripped = payload.strip()
        if not stripped or stripped == _DONE_SENTINEL:
            return None
        try:
            chunk = json.loads(stripped)
        except json.JSONDecodeError as exc:
            raise StreamParseError(message=f"Malformed chunk: {exc}", payload=stripped[:200]) from exc
        if not isinstance(chunk, Mapping):
            raise StreamParseError(message="Chunk is not a JSON object", payload=stripped[:200])
        return chunk

    def apply(self, chunk: Mapping[str, Any]) -> str:
        """Fold ``chunk`` into the turn and return its text fragment."""
        if chunk.get("error") is not None:
            raise TransportError.from_provider(self._provider, _error_message(chunk["error"]))
        if not self._turn_id and chunk.get("id"):
            self._turn_id = str(chunk["id"])

        choices = chunk.get("choices")
        if not isinstance(choices, Sequence) or not choices:
            return ""
        choice = choices[0]
        if not isinstance(choice, Mapping):
            return ""
        delta = choice.get("delta")
        if not isinstance(delta, Mapping):
            return ""

        fragments = delta.get("tool_calls")
        if isinstance(fragments, Sequence) and not isinstance(fragments, (str, bytes)):
            self._tool_calls.feed_many(fragments)

        content = delta.get("content")
        if isinstance(content, str) and content:
            self._parts.append(content)
            return content
        return ""

    def finish(self) -> ModelTurnResult:
        return ModelTurnResult(
            content="".join(self._parts),
            tool_calls=self._tool_calls.finalize(),
            turn_id=self._turn_id or _new_turn_id(),
        )


def parse_completion_body(body: bytes | str, provider: str) -> ModelTurnResult:
    """Build the aggregate from a non-streamed ``chat.completion`` body.

    Raises:
        TransportError: If the body is not JSON or carries an ``error``.
    """
    text = body.decode("utf-8", errors="replace") if isinstance(body, bytes) else body
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise TransportError.from_provider(
            provider, f"invalid JSON response: {truncate_text(text.strip(), 200)}"
        ) from exc
    if not isinstance(data, Mapping):
        raise TransportError.from_provider(provider, "response body is not a JSON object")
    if data.get("error") is not None:
        raise TransportError.from_provider(provider, _error_message(data["error"]))

    choices = data.get("choices")
    message: Mapping[str, Any] = {}
    if isinstance(choices, Sequence) and choices and isinstance(choices[0], Mapping):
        candidate = choices[0].get("message")
        if isinstance(candidate, Mapping):
            message = candidate

    aggregator = ToolCallAggregator()
    raw_calls = message.get("tool_calls")
    if isinstance(raw_calls, Sequence) and not isinstance(raw_calls, (str, bytes)):
        for index, call in enumerate(raw_calls):
            if not isinstance(call, Mapping):
                continue
            function = call.get("function") if isinstance(call.get("function"), Mapping) else {}
            arguments = function.get("arguments")
            if isinstance(arguments, Mapping):
                arguments = json.dumps(arguments, ensure_ascii=False)
            aggregator.feed(
                {
                    "index": index,
                    "id": call.get("id"),
                    "function": {"name": function.get("name"), "arguments": arguments},
                }
            )

    content = message.get("content")
    return ModelTurnResult(
        content=content if isinstance(content, str) else "",
        tool_calls=aggregator.finalize(),
        turn_id=str(data.get("id") or _new_turn_id()),
    )


# -----------------------------------------------------------------------------
# Payload
# -----------------------------------------------------------------------------


def build_chat_payload(
    *,
    model: str,
    messages: Sequence[Message],
    tools: Sequence[ToolDefinition] = (),
    backend: Backend = Backend.ROUTER,
    thinking_level: ThinkingLevel = "think",
) -> dict[str, Any]:
    """Build the JSON body for a streamed chat-completions request."""
    if not messages:
        raise ValueError("At least one message is required to start a chat")
    payload: dict[str, Any] = {
        "model": model,
        "messages": [message.to_chat_param() for message in messages],
        "stream": True,
    }
    if tools:
        payload["tools"] = [tool.to_openai_tool() for tool in tools]
    effort = _THINKING_EFFORT.get(thinking_level)
    if effort and backend is Backend.ROUTER:
        payload["reasoning"] = {"effort": effort}
    return payload


# -----------------------------------------------------------------------------
# Streams
# -----------------------------------------------------------------------------


class ChatStream:
    """One streamed model call.

    Iterate to receive ``TextDelta`` events as they arrive; once iteration
    ends normally, :attr:`result` holds the aggregate. A stream can be
    iterated once.
    """

    def __init__(
        self,
        *,
        http_client: httpx.AsyncClient,
        profile: BackendProfile,
        headers: Mapping[str, str],
        payload: Mapping[str, Any],
        signal: AbortSignal | None = None,
    ) -> None:
        self._http = http_client
        self._profile = profile
        self._headers = dict(headers)
        self._payload = payload
        self._signal = signal
        self._started = False
        self.result: ModelTurnResult | None = None

    @property
    def provider(self) -> str:
        return self._profile.provider

    def __aiter__(self) -> AsyncIterator[TextDelta]:
        if self._started:
            raise RuntimeError("ChatStream can only be iterated once")
        self._started = True
        return self._iterate()

    async def _race(self, awaitable: Awaitable[T]) -> T:
        if self._signal is None:
            return await awaitable
        return await self._signal.race(awaitable)

    async def _iterate(self) -> AsyncIterator[TextDelta]:
        provider = self._profile.provider
        request = self._http.build_request(
            "POST", self._profile.endpoint, json=self._payload, headers=self._headers
        )
        try:
            response = await self._race(self._http.send(request, stream=True))
        except httpx.HTTPError as exc:
            raise TransportError.from_provider(provider, f"request failed: {exc}") from exc

        try:
            if not 200 <= response.status_code < 300:
                body = await self._race(response.aread())
                raise TransportHTTPError.from_response(
                    provider,
                    response.status_code,
                    body.decode("utf-8", errors="replace"),
                    limit=_ERROR_DUMP_LIMIT,
                )

            content_type = response.headers.get("content-type", "").lower()
            if _EVENT_STREAM not in content_type:
                LOGGER.debug("%s ignored streaming (content-type %r)", provider, content_type)
                body = await self._race(response.aread())
                self.result = parse_completion_body(body, provider)
                return

            accumulator = _TurnAccumulator(provider)
            decoder = SSEDecoder()
            chunks = response.aiter_bytes()
            try:
                while True:
                    try:
                        raw = await self._race(chunks.__anext__())
                    except StopAsyncIteration:
                        break
                    for payload in decoder.feed(raw):
                        text = self._apply(accumulator, payload)
                        if text:
                            yield TextDelta(text=text)
                for payload in decoder.flush():
                    text = self._apply(accumulator, payload)
                    if text:
                        yield TextDelta(text=text)
            except httpx.HTTPError as exc:
                raise TransportError.from_provider(provider, f"stream interrupted: {exc}") from exc
            finally:
                await chunks.aclose()
            self.result = accumulator.finish()
        finally:
            await response.aclose()

    @staticmethod
    def _apply(accumulator: _TurnAccumulator, payload: str) -> str:
        try:
            chunk = accumulator.decode(payload)
        except StreamParseError as exc:
            LOGGER.debug("Dropping unparseable chunk: %s (%s)", exc, exc.payload)
            return ""
        if chunk is None:
            return ""
        return accumulator.apply(chunk)


class ChatStreamClient:
    """Opens :class:`ChatStream` instances against chat-completions endpoints."""

    def __init__(
        self,
        *,
        http_client: httpx.AsyncClient | None = None,
        request_timeout: float | None = 90.0,
        debug_logging: bool = False,
    ) -> None:
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(request_timeout, connect=30.0)
        )
        self._debug_logging = debug_logging

    def stream_chat(
        self,
        profile: BackendProfile,
        credential: str,
        messages: Sequence[Message],
        *,
        model: str,
        tools: Sequence[ToolDefinition] = (),
        thinking_level: ThinkingLevel = "think",
        signal: AbortSignal | None = None,
    ) -> ChatStream:
        """Prepare a streamed chat completion for ``messages``."""
        payload = build_chat_payload(
            model=model,
            messages=messages,
            tools=tools,
            backend=profile.backend,
            thinking_level=thinking_level,
        )
        LOGGER.debug(
            "Starting streamed chat completion via %s (%s) with %d message(s) and %d tool(s)",
            profile.provider,
            model,
            len(payload["messages"]),
            len(tools),
        )
        if self._debug_logging:
            self._log_prompt_payload(payload)
        return ChatStream(
            http_client=self._http,
            profile=profile,
            headers=profile.request_headers(credential),
            payload=payload,
            signal=signal,
        )

    def _log_prompt_payload(self, payload: Mapping[str, Any]) -> None:
        try:
            serialized = json.dumps(payload, ensure_ascii=False, indent=2)
        except (TypeError, ValueError):
            LOGGER.debug("Chat payload (unserializable): %s", payload)
        else:
            LOGGER.debug("Chat payload:\n%s", serialized)

    async def aclose(self) -> None:
        """Close the underlying HTTP client when this instance created it."""
        if self._owns_client:
            await self._http.aclose()
