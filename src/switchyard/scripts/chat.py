"""CLI that sends one message through the agent runtime and prints the events."""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import json
import logging
import signal as signal_module
import sys
from pathlib import Path
from typing import Sequence, TextIO

from ..ai.cancellation import AbortSignal
from ..ai.events import ErrorEvent, RuntimeEvent, TextComplete, TextDelta, ToolResultEvent, ToolStart
from ..ai.runtime import THINKING_LEVELS, AgentRuntime
from ..ai.types import RuntimeConfig
from ..services.credentials import ChainedCredentialResolver, EnvCredentialResolver, VaultCredentialStore
from ..services.settings import SettingsStore
from ..utils import logging as logging_utils

_LOGGER = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Send one message to a model and stream the reply.")
    parser.add_argument("message", nargs="*", help="Message text. Reads stdin when omitted.")
    parser.add_argument("--model", help="Model identifier, e.g. gpt-4o, anthropic/claude-3.5-sonnet or codex.")
    parser.add_argument(
        "--workspace",
        type=Path,
        default=Path.cwd(),
        help="Workspace root holding skills/ (defaults to the current directory).",
    )
    parser.add_argument("--thinking", choices=THINKING_LEVELS, default="think", help="Reasoning effort hint.")
    parser.add_argument(
        "--headless", action="store_true", help="No interactive user; Ctrl-C is not turned into an abort."
    )
    parser.add_argument("--settings", type=Path, help="Alternate settings.json path.")
    parser.add_argument("--json", action="store_true", help="Print every event as a JSON line.")
    parser.add_argument("--verbose", "-v", action="store_true", help="Log debug output to the console.")
    return parser


def _read_message(parts: Sequence[str], stdin: TextIO) -> str:
    if parts:
        return " ".join(parts).strip()
    if stdin.isatty():
        return ""
    return stdin.read().strip()


def _render(event: RuntimeEvent, *, as_json: bool, out: TextIO, err: TextIO) -> None:
    if as_json:
        out.write(json.dumps(event.to_dict(), ensure_ascii=False) + "\n")
        out.flush()
        return
    if isinstance(event, TextDelta):
        out.write(event.text)
        out.flush()
    elif isinstance(event, TextComplete):
        out.write("\n")
    elif isinstance(event, ToolStart):
        err.write(f"[tool] {event.tool_name} {json.dumps(dict(event.input), ensure_ascii=False)}\n")
    elif isinstance(event, ToolResultEvent):
        status = "error" if event.is_error else "ok"
        preview = event.result if len(event.result) <= 200 else event.result[:200] + "..."
        err.write(f"[tool:{status}] {preview}\n")
    elif isinstance(event, ErrorEvent):
        err.write(f"error: {event.message}\n")


async def run_chat(
    runtime: AgentRuntime,
    message: str,
    *,
    as_json: bool = False,
    out: TextIO = sys.stdout,
    err: TextIO = sys.stderr,
) -> int:
    """Send ``message`` and render events; returns the process exit code."""

    abort = AbortSignal()
    loop = asyncio.get_running_loop()
    # Headless runs leave SIGINT to the embedding process.
    interactive = not runtime.config.headless
    if interactive:
        with contextlib.suppress(NotImplementedError, RuntimeError):
            loop.add_signal_handler(signal_module.SIGINT, abort.abort, "interrupted")
    saw_error = False
    try:
        async for event in runtime.send_message(message, signal=abort):
            saw_error = saw_error or isinstance(event, ErrorEvent)
            _render(event, as_json=as_json, out=out, err=err)
    finally:
        if interactive:
            with contextlib.suppress(NotImplementedError, RuntimeError):
                loop.remove_signal_handler(signal_module.SIGINT)
    if abort.aborted:
        err.write("aborted\n")
        return 130
    return 1 if saw_error else 0


async def _main_async(args: argparse.Namespace, message: str) -> int:
    settings = SettingsStore(args.settings).load()
    logging_utils.apply_runtime_logging(settings)
    credentials = ChainedCredentialResolver([EnvCredentialResolver(), VaultCredentialStore()])
    config = RuntimeConfig(
        workspace_root=args.workspace.expanduser().resolve(),
        model=args.model or settings.default_model,
        thinking_level=args.thinking,
        headless=args.headless,
    )
    async with AgentRuntime(config, settings=settings, credentials=credentials) as runtime:
        return await run_chat(runtime, message, as_json=args.json)


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging_utils.setup_logging(logging.DEBUG if args.verbose else logging.INFO, console=args.verbose)
    message = _read_message(args.message, sys.stdin)
    if not message:
        print("No message provided.", file=sys.stderr)
        return 2

    try:
        return asyncio.run(_main_async(args, message))
    except ValueError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":  # pragma: no cover - manual invocation
    sys.exit(main())
