"""Tests for scripts/chat.py."""

from __future__ import annotations

import asyncio
import io
import json
from pathlib import Path

import httpx
import pytest

from switchyard.ai.runtime import AgentRuntime
from switchyard.ai.types import RuntimeConfig
from switchyard.scripts.chat import _read_message, build_parser, run_chat
from switchyard.services.settings import RuntimeSettings
from tests.helpers import ScriptedTransport, StaticCredentials, text_reply


def make_runtime(
    workspace: Path, settings: RuntimeSettings, script: ScriptedTransport, *, headless: bool = False
) -> AgentRuntime:
    return AgentRuntime(
        RuntimeConfig(workspace_root=workspace, model="gpt-4o", headless=headless),
        settings=settings,
        credentials=StaticCredentials({"openai_api_key": "sk-openai"}),
        http_client=script.client(),
    )


class TestParser:
    def test_defaults(self) -> None:
        args = build_parser().parse_args(["hello", "world"])
        assert args.message == ["hello", "world"]
        assert args.thinking == "think"
        assert args.model is None
        assert args.json is False

    def test_rejects_unknown_thinking_level(self) -> None:
        with pytest.raises(SystemExit):
            build_parser().parse_args(["--thinking", "turbo", "hi"])

    def test_read_message_prefers_arguments(self) -> None:
        assert _read_message(["a", "b"], io.StringIO("ignored")) == "a b"
        assert _read_message([], io.StringIO("  from stdin \n")) == "from stdin"


class TestRunChat:
    @pytest.mark.asyncio
    async def test_plain_output(self, workspace: Path, settings: RuntimeSettings) -> None:
        out, err = io.StringIO(), io.StringIO()
        runtime = make_runtime(workspace, settings, ScriptedTransport([text_reply("Hello!")]))

        code = await run_chat(runtime, "hi", out=out, err=err)

        assert code == 0
        assert out.getvalue() == "Hello!\n"
        assert err.getvalue() == ""

    @pytest.mark.asyncio
    async def test_json_lines(self, workspace: Path, settings: RuntimeSettings) -> None:
        out = io.StringIO()
        runtime = make_runtime(workspace, settings, ScriptedTransport([text_reply("Hello!")]))

        await run_chat(runtime, "hi", as_json=True, out=out, err=io.StringIO())

        lines = [json.loads(line) for line in out.getvalue().splitlines()]
        assert [line["type"] for line in lines] == ["text_delta", "text_complete", "complete"]
        assert lines[1]["isIntermediate"] is False

    @pytest.mark.asyncio
    async def test_error_exit_code(self, workspace: Path, settings: RuntimeSettings) -> None:
        err = io.StringIO()
        runtime = make_runtime(workspace, settings, ScriptedTransport([httpx.Response(401, text="bad key")]))

        code = await run_chat(runtime, "hi", out=io.StringIO(), err=err)

        assert code == 1
        assert err.getvalue() == "error: OpenAI API error: 401 bad key\n"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(("headless", "expected"), [(False, ["add", "remove"]), (True, [])])
    async def test_sigint_handler_follows_headless_flag(
        self,
        workspace: Path,
        settings: RuntimeSettings,
        monkeypatch: pytest.MonkeyPatch,
        headless: bool,
        expected: list[str],
    ) -> None:
        calls: list[str] = []
        loop = asyncio.get_running_loop()
        monkeypatch.setattr(loop, "add_signal_handler", lambda *args: calls.append("add"))
        monkeypatch.setattr(loop, "remove_signal_handler", lambda *args: calls.append("remove"))
        runtime = make_runtime(workspace, settings, ScriptedTransport([text_reply("Hello!")]), headless=headless)

        code = await run_chat(runtime, "hi", out=io.StringIO(), err=io.StringIO())

        assert code == 0
        assert calls == expected
