"""Tests for the streaming chat-completions client."""

from __future__ import annotations

import asyncio
import json
from typing import AsyncIterator

import httpx
import pytest

from switchyard.ai.backends import Backend, BackendProfile, profile_for
from switchyard.ai.cancellation import AbortSignal
from switchyard.ai.client import (
    ChatStreamClient,
    SSEDecoder,
    build_chat_payload,
    parse_completion_body,
)
from switchyard.ai.errors import AbortedError, TransportError, TransportHTTPError
from switchyard.ai.events import TextDelta
from switchyard.ai.types import Message, ToolCall, ToolDefinition
from switchyard.services.settings import RuntimeSettings
from tests.helpers import ScriptedTransport, content_chunk, sse_body, sse_response, tool_chunk


def _router_profile(settings: RuntimeSettings) -> BackendProfile:
    return profile_for(Backend.ROUTER, settings)


async def _collect(stream) -> list[TextDelta]:
    return [event async for event in stream]


class _HangingStream(httpx.AsyncByteStream):
    """Response body that never produces a byte."""

    def __init__(self) -> None:
        self.closed = False

    async def __aiter__(self) -> AsyncIterator[bytes]:
        await asyncio.sleep(30)
        yield b""

    async def aclose(self) -> None:
        self.closed = True


# -----------------------------------------------------------------------------
# SSE framing
# -----------------------------------------------------------------------------


class TestSSEDecoder:
    """Framing of line-delimited event streams."""

    def test_blank_line_ends_an_event(self) -> None:
        decoder = SSEDecoder()
        assert decoder.feed(b"data: one\n") == []
        assert decoder.feed(b"\n") == ["one"]

    def test_multiple_data_lines_are_joined(self) -> None:
        decoder = SSEDecoder()
        assert decoder.feed(b"data: a\ndata: b\n\n") == ["a\nb"]

    def test_crlf_and_comments_and_other_fields(self) -> None:
        decoder = SSEDecoder()
        payloads = decoder.feed(b": keep-alive\r\nevent: message\r\nid: 7\r\ndata: {\"x\":1}\r\n\r\n")
        assert payloads == ['{"x":1}']

    def test_chunk_boundaries_inside_lines_and_characters(self) -> None:
        raw = "data: héllo\n\n".encode("utf-8")
        decoder = SSEDecoder()
        payloads: list[str] = []
        for index in range(len(raw)):
            payloads.extend(decoder.feed(raw[index : index + 1]))
        assert payloads == ["héllo"]

    def test_flush_emits_trailing_unterminated_event(self) -> None:
        decoder = SSEDecoder()
        assert decoder.feed(b"data: tail") == []
        assert decoder.flush() == ["tail"]
        assert decoder.flush() == []

    def test_data_without_space(self) -> None:
        decoder = SSEDecoder()
        assert decoder.feed(b"data:[DONE]\n\n") == ["[DONE]"]


# -----------------------------------------------------------------------------
# Payload
# -----------------------------------------------------------------------------


class TestBuildChatPayload:
    def test_minimal_payload(self) -> None:
        payload = build_chat_payload(model="gpt-4o", messages=[Message.user("hi")], backend=Backend.DIRECT_API)
        assert payload == {
            "model": "gpt-4o",
            "messages": [{"role": "user", "content": "hi"}],
            "stream": True,
        }

    def test_tools_and_router_reasoning(self) -> None:
        payload = build_chat_payload(
            model="anthropic/claude-3.5-sonnet",
            messages=[Message.user("hi")],
            tools=[ToolDefinition(name="docs__search")],
            backend=Backend.ROUTER,
            thinking_level="max",
        )
        assert payload["tools"] == [
            {"type": "function", "function": {"name": "docs__search", "parameters": {"type": "object", "properties": {}}}}
        ]
        assert payload["reasoning"] == {"effort": "high"}

    def test_reasoning_is_router_only(self) -> None:
        payload = build_chat_payload(
            model="o3-mini", messages=[Message.user("hi")], backend=Backend.DIRECT_API, thinking_level="max"
        )
        assert "reasoning" not in payload

    def test_thinking_off_sends_no_reasoning(self) -> None:
        payload = build_chat_payload(
            model="openai/gpt-4o", messages=[Message.user("hi")], backend=Backend.ROUTER, thinking_level="off"
        )
        assert "reasoning" not in payload

    def test_assistant_tool_calls_and_tool_messages(self) -> None:
        call = ToolCall(id="call_1", name="docs__search", arguments='{"q":"x"}')
        payload = build_chat_payload(
            model="gpt-4o",
            messages=[Message.user("hi"), Message.assistant("", [call]), Message.tool("found", "call_1")],
        )
        assistant, tool = payload["messages"][1], payload["messages"][2]
        assert assistant["tool_calls"] == [
            {"id": "call_1", "type": "function", "function": {"name": "docs__search", "arguments": '{"q":"x"}'}}
        ]
        assert tool == {"role": "tool", "content": "found", "tool_call_id": "call_1"}

    def test_empty_messages_rejected(self) -> None:
        with pytest.raises(ValueError):
            build_chat_payload(model="gpt-4o", messages=[])


# -----------------------------------------------------------------------------
# Streams
# -----------------------------------------------------------------------------


class TestChatStream:
    """End-to-end behaviour against a mock transport."""

    @pytest.mark.asyncio
    async def test_deltas_are_emitted_and_concatenated(self, settings: RuntimeSettings) -> None:
        script = ScriptedTransport(
            [sse_response([content_chunk("Hel", chunk_id="chatcmpl-9"), content_chunk("lo"), content_chunk("!")])]
        )
        client = ChatStreamClient(http_client=script.client())

        stream = client.stream_chat(_router_profile(settings), "sk-router", [Message.user("hi")], model="openai/gpt-4o")
        deltas = await _collect(stream)

        assert [delta.text for delta in deltas] == ["Hel", "lo", "!"]
        assert stream.result is not None
        assert stream.result.content == "Hello!"
        assert stream.result.turn_id == "chatcmpl-9"
        assert stream.result.tool_calls == ()

    @pytest.mark.asyncio
    async def test_request_carries_headers_and_payload(self, settings: RuntimeSettings) -> None:
        script = ScriptedTransport([sse_response([content_chunk("ok")])])
        client = ChatStreamClient(http_client=script.client())

        await _collect(
            client.stream_chat(
                _router_profile(settings),
                "sk-router",
                [Message.user("hi")],
                model="openai/gpt-4o",
                thinking_level="think",
            )
        )

        request = script.requests[0]
        assert str(request.url) == "https://router.test/api/v1/chat/completions"
        assert request.headers["authorization"] == "Bearer sk-router"
        assert request.headers["x-title"] == "Switchyard Tests"
        assert script.payloads[0]["stream"] is True
        assert script.payloads[0]["reasoning"] == {"effort": "medium"}

    @pytest.mark.asyncio
    async def test_tool_call_fragments_are_aggregated(self, settings: RuntimeSettings) -> None:
        script = ScriptedTransport(
            [
                sse_response(
                    [
                        tool_chunk(0, call_id="call_1", name="docs__search"),
                        tool_chunk(1, call_id="call_2", name="docs__open", arguments="{}"),
                        tool_chunk(0, arguments='{"q": '),
                        tool_chunk(0, arguments='"x"}'),
                        tool_chunk(2, arguments="{}"),
                    ]
                )
            ]
        )
        client = ChatStreamClient(http_client=script.client())

        stream = client.stream_chat(_router_profile(settings), "k", [Message.user("hi")], model="m/x")
        deltas = await _collect(stream)

        assert deltas == []
        assert stream.result is not None
        assert stream.result.tool_calls == (
            ToolCall(id="call_1", name="docs__search", arguments='{"q": "x"}'),
            ToolCall(id="call_2", name="docs__open", arguments="{}"),
        )

    @pytest.mark.asyncio
    async def test_malformed_chunks_are_skipped(self, settings: RuntimeSettings) -> None:
        script = ScriptedTransport(
            [sse_response([content_chunk("a"), "{not json", "[1, 2]", content_chunk("b")])]
        )
        client = ChatStreamClient(http_client=script.client())

        stream = client.stream_chat(_router_profile(settings), "k", [Message.user("hi")], model="m/x")
        await _collect(stream)

        assert stream.result is not None
        assert stream.result.content == "ab"

    @pytest.mark.asyncio
    async def test_missing_chunk_id_generates_turn_id(self, settings: RuntimeSettings) -> None:
        body = sse_body([{"choices": [{"delta": {"content": "x"}}]}])
        script = ScriptedTransport([httpx.Response(200, headers={"content-type": "text/event-stream"}, content=body)])
        client = ChatStreamClient(http_client=script.client())

        stream = client.stream_chat(_router_profile(settings), "k", [Message.user("hi")], model="m/x")
        await _collect(stream)

        assert stream.result is not None
        assert stream.result.turn_id.startswith("turn_")

    @pytest.mark.asyncio
    async def test_unterminated_final_event_is_flushed(self, settings: RuntimeSettings) -> None:
        body = b"data: " + json.dumps(content_chunk("tail")).encode("utf-8")
        script = ScriptedTransport([httpx.Response(200, headers={"content-type": "text/event-stream"}, content=body)])
        client = ChatStreamClient(http_client=script.client())

        stream = client.stream_chat(_router_profile(settings), "k", [Message.user("hi")], model="m/x")
        deltas = await _collect(stream)

        assert [delta.text for delta in deltas] == ["tail"]

    @pytest.mark.asyncio
    async def test_error_chunk_raises_provider_prefixed_error(self, settings: RuntimeSettings) -> None:
        script = ScriptedTransport(
            [sse_response([content_chunk("par"), {"error": {"message": "Rate limit exceeded", "code": 429}}])]
        )
        client = ChatStreamClient(http_client=script.client())

        stream = client.stream_chat(_router_profile(settings), "k", [Message.user("hi")], model="m/x")
        with pytest.raises(TransportError) as excinfo:
            await _collect(stream)

        assert excinfo.value.message == "OpenRouter error: Rate limit exceeded"
        assert excinfo.value.provider == "OpenRouter"
        assert stream.result is None

    @pytest.mark.asyncio
    async def test_error_without_message_is_dumped_and_capped(self, settings: RuntimeSettings) -> None:
        script = ScriptedTransport([sse_response([{"error": {"detail": "x" * 5000}}])])
        client = ChatStreamClient(http_client=script.client())

        with pytest.raises(TransportError) as excinfo:
            await _collect(client.stream_chat(_router_profile(settings), "k", [Message.user("hi")], model="m/x"))

        message = excinfo.value.message
        assert message.startswith('OpenRouter error: {"detail": "xxx')
        assert len(message) <= len("OpenRouter error: ") + 2000 + 3

    @pytest.mark.asyncio
    async def test_http_error_status_raises(self, settings: RuntimeSettings) -> None:
        script = ScriptedTransport([httpx.Response(401, text="invalid api key")])
        client = ChatStreamClient(http_client=script.client())

        with pytest.raises(TransportHTTPError) as excinfo:
            await _collect(
                client.stream_chat(profile_for(Backend.DIRECT_API, settings), "bad", [Message.user("hi")], model="gpt-4o")
            )

        assert excinfo.value.status_code == 401
        assert excinfo.value.message == "OpenAI API error: 401 invalid api key"

    @pytest.mark.asyncio
    async def test_http_error_body_is_truncated(self, settings: RuntimeSettings) -> None:
        script = ScriptedTransport([httpx.Response(500, text="e" * 4000)])
        client = ChatStreamClient(http_client=script.client())

        with pytest.raises(TransportHTTPError) as excinfo:
            await _collect(client.stream_chat(_router_profile(settings), "k", [Message.user("hi")], model="m/x"))

        assert len(excinfo.value.body) == 2003

    @pytest.mark.asyncio
    async def test_non_streamed_body_is_parsed_without_deltas(self, settings: RuntimeSettings) -> None:
        body = {
            "id": "chatcmpl-json",
            "choices": [
                {
                    "message": {
                        "content": "plain answer",
                        "tool_calls": [
                            {"id": "call_9", "type": "function", "function": {"name": "docs__open", "arguments": "{\"id\":1}"}}
                        ],
                    }
                }
            ],
        }
        script = ScriptedTransport([httpx.Response(200, json=body)])
        client = ChatStreamClient(http_client=script.client())

        stream = client.stream_chat(_router_profile(settings), "k", [Message.user("hi")], model="m/x")
        deltas = await _collect(stream)

        assert deltas == []
        assert stream.result is not None
        assert stream.result.content == "plain answer"
        assert stream.result.turn_id == "chatcmpl-json"
        assert stream.result.tool_calls == (ToolCall(id="call_9", name="docs__open", arguments='{"id":1}'),)

    @pytest.mark.asyncio
    async def test_abort_before_first_byte(self, settings: RuntimeSettings) -> None:
        body = _HangingStream()
        script = ScriptedTransport(
            [httpx.Response(200, headers={"content-type": "text/event-stream"}, stream=body)]
        )
        client = ChatStreamClient(http_client=script.client())
        signal = AbortSignal()

        stream = client.stream_chat(_router_profile(settings), "k", [Message.user("hi")], model="m/x", signal=signal)
        asyncio.get_running_loop().call_later(0.05, signal.abort, "user stop")

        with pytest.raises(AbortedError):
            await _collect(stream)

        assert body.closed
        assert stream.result is None

    @pytest.mark.asyncio
    async def test_abort_while_connecting(self, settings: RuntimeSettings) -> None:
        async def never_answers(request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(30)
            raise AssertionError("unreachable")

        client = ChatStreamClient(http_client=httpx.AsyncClient(transport=httpx.MockTransport(never_answers)))
        signal = AbortSignal()
        asyncio.get_running_loop().call_later(0.05, signal.abort)

        with pytest.raises(AbortedError):
            await _collect(
                client.stream_chat(_router_profile(settings), "k", [Message.user("hi")], model="m/x", signal=signal)
            )

    @pytest.mark.asyncio
    async def test_stream_iterates_once(self, settings: RuntimeSettings) -> None:
        script = ScriptedTransport([sse_response([content_chunk("x")])])
        client = ChatStreamClient(http_client=script.client())
        stream = client.stream_chat(_router_profile(settings), "k", [Message.user("hi")], model="m/x")
        await _collect(stream)
        with pytest.raises(RuntimeError):
            stream.__aiter__()

    @pytest.mark.asyncio
    async def test_injected_client_is_not_closed(self) -> None:
        http_client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(200)))
        client = ChatStreamClient(http_client=http_client)
        await client.aclose()
        assert not http_client.is_closed
        await http_client.aclose()


class TestParseCompletionBody:
    def test_invalid_json_raises(self) -> None:
        with pytest.raises(TransportError, match="OpenAI error: invalid JSON response"):
            parse_completion_body(b"<html>", "OpenAI")

    def test_error_body_raises(self) -> None:
        with pytest.raises(TransportError, match="OpenAI error: quota"):
            parse_completion_body(json.dumps({"error": {"message": "quota"}}), "OpenAI")

    def test_nameless_calls_dropped(self) -> None:
        result = parse_completion_body(
            json.dumps({"choices": [{"message": {"content": None, "tool_calls": [{"id": "c", "function": {}}]}}]}),
            "OpenAI",
        )
        assert result.content == ""
        assert result.tool_calls == ()
