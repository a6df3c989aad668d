"""Shared test helpers and stub classes.

Builders for streamed chat-completion bodies, a scripted HTTP transport and
small fakes for tool sources. Import from here instead of duplicating them in
individual test files.
"""

from __future__ import annotations

import json
import stat
import sys
import textwrap
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping, Sequence, Union

import httpx

ChunkLike = Union[Mapping[str, Any], str]
ResponseFactory = Callable[[httpx.Request], httpx.Response]


# -----------------------------------------------------------------------------
# Stream bodies
# -----------------------------------------------------------------------------


def sse_body(chunks: Iterable[ChunkLike], *, done: bool = True) -> bytes:
    """Encode ``chunks`` as ``data:`` events, optionally ending with ``[DONE]``."""
    events = []
    for chunk in chunks:
        payload = chunk if isinstance(chunk, str) else json.dumps(chunk)
        events.append(f"data: {payload}\n\n")
    if done:
        events.append("data: [DONE]\n\n")
    return "".join(events).encode("utf-8")


def content_chunk(text: str, *, chunk_id: str = "chatcmpl-1") -> dict[str, Any]:
    return {"id": chunk_id, "choices": [{"index": 0, "delta": {"content": text}}]}


def tool_chunk(
    index: int,
    *,
    call_id: str | None = None,
    name: str | None = None,
    arguments: str | None = None,
    chunk_id: str = "chatcmpl-1",
) -> dict[str, Any]:
    fragment: dict[str, Any] = {"index": index}
    if call_id is not None:
        fragment["id"] = call_id
    function: dict[str, Any] = {}
    if name is not None:
        function["name"] = name
    if arguments is not None:
        function["arguments"] = arguments
    if function:
        fragment["function"] = function
    return {"id": chunk_id, "choices": [{"index": 0, "delta": {"tool_calls": [fragment]}}]}


def sse_response(chunks: Iterable[ChunkLike], *, done: bool = True) -> httpx.Response:
    return httpx.Response(
        200,
        headers={"content-type": "text/event-stream"},
        content=sse_body(chunks, done=done),
    )


def text_reply(text: str, *, chunk_id: str = "chatcmpl-text") -> httpx.Response:
    """A streamed reply carrying ``text`` and no tool calls."""
    return sse_response([content_chunk(text, chunk_id=chunk_id)])


def tool_reply(
    calls: Sequence[tuple[str, str, str]],
    *,
    text: str = "",
    chunk_id: str = "chatcmpl-tools",
) -> httpx.Response:
    """A streamed reply requesting ``calls`` given as (id, name, arguments)."""
    chunks: list[ChunkLike] = []
    if text:
        chunks.append(content_chunk(text, chunk_id=chunk_id))
    for index, (call_id, name, arguments) in enumerate(calls):
        chunks.append(tool_chunk(index, call_id=call_id, name=name, chunk_id=chunk_id))
        chunks.append(tool_chunk(index, arguments=arguments, chunk_id=chunk_id))
    return sse_response(chunks)


# -----------------------------------------------------------------------------
# Scripted transport
# -----------------------------------------------------------------------------


class ScriptedTransport:
    """Serves queued responses to successive requests and records the payloads.

    Example:
        script = ScriptedTransport([text_reply("hi")])
        client = httpx.AsyncClient(transport=script.transport())
    """

    def __init__(self, responses: Iterable[httpx.Response | ResponseFactory]) -> None:
        self._responses = list(responses)
        self.requests: list[httpx.Request] = []

    @property
    def payloads(self) -> list[dict[str, Any]]:
        return [json.loads(request.content) for request in self.requests]

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self._handle)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self.transport())

    def _handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if not self._responses:
            raise AssertionError(f"Unexpected request #{len(self.requests)} to {request.url}")
        response = self._responses.pop(0)
        if callable(response):
            return response(request)
        return response


# -----------------------------------------------------------------------------
# Credentials and tool sources
# -----------------------------------------------------------------------------


class StaticCredentials:
    """Credential resolver backed by a plain dict."""

    def __init__(self, values: Mapping[str, str] | None = None) -> None:
        self._values = dict(values or {})
        self.lookups: list[str] = []

    def get_credential(self, kind: str) -> str | None:
        self.lookups.append(kind)
        return self._values.get(kind)


class FakeRemoteClient:
    """In-memory remote tool client recording calls in order."""

    def __init__(
        self,
        tools: Sequence[Mapping[str, Any]],
        results: Mapping[str, Any] | None = None,
        *,
        fail_list: bool = False,
        fail_close: bool = False,
    ) -> None:
        self._tools = list(tools)
        self._results = dict(results or {})
        self._fail_list = fail_list
        self._fail_close = fail_close
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.closed = False

    async def list_tools(self) -> list[Mapping[str, Any]]:
        if self._fail_list:
            raise ConnectionError("server unavailable")
        return self._tools

    async def call_tool(self, name: str, arguments: Mapping[str, Any]) -> Any:
        self.calls.append((name, dict(arguments)))
        result = self._results.get(name, f"{name} ok")
        if isinstance(result, Exception):
            raise result
        if callable(result):
            return result(arguments)
        return result

    async def close(self) -> None:
        self.closed = True
        if self._fail_close:
            raise RuntimeError("close failed")


# -----------------------------------------------------------------------------
# Fake CLI
# -----------------------------------------------------------------------------


def write_fake_cli(directory: Path, body: str, *, name: str = "fake-codex") -> Path:
    """Write an executable Python script standing in for the Codex CLI.

    ``body`` runs with ``sys``, ``json`` and ``time`` imported and the
    received prompt bound to ``prompt``.
    """
    script = directory / name
    source = "#!{python}\nimport json, sys, time\nprompt = sys.stdin.read()\n{body}\n".format(
        python=sys.executable,
        body=textwrap.dedent(body).strip(),
    )
    script.write_text(source, encoding="utf-8")
    script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return script
