"""Bridge to the Codex command-line agent.

The CLI is driven non-interactively: the flattened transcript goes to stdin,
and stdout yields one JSON event per line. Only assistant text and explicit
errors are mapped onto runtime events; the CLI executes its own tools inside
a read-only sandbox, so no tool-call events cross this boundary.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import os
import signal as signal_module
from dataclasses import dataclass
from pathlib import Path
from typing import Any, AsyncIterator, Awaitable, Mapping, Sequence, TypeVar, Union

from .cancellation import AbortSignal
from .errors import ProcessExitError, truncate_text
from .events import ErrorEvent, TextDelta
from .types import Message

__all__ = [
    "CodexSubprocessAdapter",
    "SubprocessStream",
    "SubprocessResult",
    "build_codex_command",
    "flatten_transcript",
]

LOGGER = logging.getLogger(__name__)
T = TypeVar("T")

PROVIDER = "Codex"
_MAX_LINE_BYTES = 8 * 1024 * 1024
_STDERR_TAIL_CHARS = 4000
_STDERR_PREVIEW_LINES = 5
_ERROR_DUMP_LIMIT = 2000

SubprocessEvent = Union[TextDelta, ErrorEvent]


# -----------------------------------------------------------------------------
# Transcript and command line
# -----------------------------------------------------------------------------


def flatten_transcript(messages: Sequence[Message]) -> str:
    """Render ``messages`` as the plain-text prompt the CLI expects.

    Each message becomes ``ROLE:\\n<text>\\n``; a final ``ASSISTANT:\\n``
    marker asks the CLI for the next turn.
    """
    parts = [f"{message.role.upper()}:\n{message.text}\n" for message in messages]
    parts.append("ASSISTANT:\n")
    return "".join(parts)


def build_codex_command(executable: str, model: str) -> list[str]:
    """Return the fixed argument list; only ``executable`` and ``model`` vary."""
    return [
        executable,
        "exec",
        "--json",
        "--sandbox",
        "read-only",
        "--skip-git-repo-check",
        "--model",
        model,
        "-c",
        'approval_policy="never"',
        "-",
    ]


# -----------------------------------------------------------------------------
# Event shapes
# -----------------------------------------------------------------------------


def _assistant_text(event: Mapping[str, Any]) -> str:
    if event.get("type") == "item.completed":
        item = event.get("item")
        if isinstance(item, Mapping) and item.get("type") == "agent_message":
            text = item.get("text")
            return text if isinstance(text, str) else ""
    msg = event.get("msg")
    if isinstance(msg, Mapping):
        if msg.get("type") == "agent_message":
            text = msg.get("message")
            return text if isinstance(text, str) else ""
        if msg.get("type") == "agent_message_delta":
            text = msg.get("delta")
            return text if isinstance(text, str) else ""
    return ""


def _describe(error: Any) -> str:
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


def _explicit_error(event: Mapping[str, Any]) -> str | None:
    event_type = event.get("type")
    if event_type == "error":
        return _describe(event.get("message") or event.get("error") or event)
    if event_type == "turn.failed":
        return _describe(event.get("error") or "turn failed")
    msg = event.get("msg")
    if isinstance(msg, Mapping) and msg.get("type") == "error":
        return _describe(msg.get("message") or msg)
    if event.get("error") is not None:
        return _describe(event["error"])
    return None


# -----------------------------------------------------------------------------
# Streams
# -----------------------------------------------------------------------------


@dataclass(slots=True)
class SubprocessResult:
    """Outcome of one CLI run.

    Attributes:
        content: Accumulated assistant text; empty when the run failed.
        had_error: True when an error event was yielded.
        exit_code: Process exit status, or None when it was killed early.
        stderr_tail: Last few kilobytes of stderr, for diagnostics.
    """

    content: str
    had_error: bool
    exit_code: int | None = None
    stderr_tail: str = ""


class _StderrTail:
    def __init__(self, limit: int = _STDERR_TAIL_CHARS) -> None:
        self._limit = limit
        self._text = ""

    def append(self, chunk: bytes) -> None:
        self._text = (self._text + chunk.decode("utf-8", errors="replace"))[-self._limit:]

    @property
    def text(self) -> str:
        return self._text

    def preview(self) -> str:
        lines = [line.strip() for line in self._text.splitlines() if line.strip()]
        return "\n".join(lines[-_STDERR_PREVIEW_LINES:])


class SubprocessStream:
    """One CLI invocation; iterate once for events, then read :attr:`result`."""

    def __init__(
        self,
        *,
        argv: Sequence[str],
        prompt: str,
        cwd: Path | str | None,
        signal: AbortSignal | None = None,
        grace_seconds: float = 2.0,
        env: Mapping[str, str] | None = None,
    ) -> None:
        self._argv = list(argv)
        self._prompt = prompt
        self._cwd = str(cwd) if cwd is not None else None
        self._signal = signal
        self._grace_seconds = grace_seconds
        self._env = dict(env) if env is not None else None
        self._started = False
        self._cli_name = os.path.basename(self._argv[0]) if self._argv else "cli"
        self.result: SubprocessResult | None = None

    def __aiter__(self) -> AsyncIterator[SubprocessEvent]:
        if self._started:
            raise RuntimeError("SubprocessStream can only be iterated once")
        self._started = True
        return self._iterate()

    async def _race(self, awaitable: Awaitable[T]) -> T:
        if self._signal is None:
            return await awaitable
        return await self._signal.race(awaitable)

    async def _spawn(self) -> asyncio.subprocess.Process:
        if self._signal is not None:
            self._signal.raise_if_aborted()
        try:
            return await asyncio.create_subprocess_exec(
                *self._argv,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=self._cwd,
                env=self._env,
                limit=_MAX_LINE_BYTES,
            )
        except FileNotFoundError as exc:
            raise ProcessExitError.from_provider(
                PROVIDER,
                f"{self._cli_name} CLI not found. Install it or point subprocess_executable at it.",
            ) from exc
        except OSError as exc:
            raise ProcessExitError.from_provider(
                PROVIDER, f"failed to start {self._cli_name} CLI: {exc}"
            ) from exc

    async def _write_prompt(self, proc: asyncio.subprocess.Process) -> None:
        if proc.stdin is None:
            return
        try:
            proc.stdin.write(self._prompt.encode("utf-8"))
            await self._race(proc.stdin.drain())
        except (BrokenPipeError, ConnectionResetError) as exc:
            LOGGER.debug("%s closed stdin early: %s", self._cli_name, exc)
        finally:
            proc.stdin.close()

    async def _drain_stderr(self, proc: asyncio.subprocess.Process, tail: _StderrTail) -> None:
        if proc.stderr is None:
            return
        while True:
            chunk = await proc.stderr.read(4096)
            if not chunk:
                return
            tail.append(chunk)

    async def _terminate(self, proc: asyncio.subprocess.Process) -> None:
        if proc.returncode is not None:
            return
        LOGGER.debug("Terminating %s (pid %s)", self._cli_name, proc.pid)
        with contextlib.suppress(ProcessLookupError):
            proc.send_signal(signal_module.SIGTERM)
        try:
            await asyncio.wait_for(proc.wait(), timeout=self._grace_seconds)
        except asyncio.TimeoutError:
            with contextlib.suppress(ProcessLookupError):
                proc.kill()
            await proc.wait()

    async def _iterate(self) -> AsyncIterator[SubprocessEvent]:
        proc = await self._spawn()
        tail = _StderrTail()
        stderr_task = asyncio.create_task(self._drain_stderr(proc, tail))
        parts: list[str] = []
        had_error = False
        exit_code: int | None = None
        try:
            await self._write_prompt(proc)
            assert proc.stdout is not None
            while True:
                try:
                    raw = await self._race(proc.stdout.readline())
                except ValueError:
                    LOGGER.warning("%s stdout line exceeded %d bytes, skipping", self._cli_name, _MAX_LINE_BYTES)
                    continue
                if not raw:
                    break
                line = raw.decode("utf-8", errors="replace").strip()
                if not line:
                    continue
                try:
                    event = json.loads(line)
                except json.JSONDecodeError:
                    LOGGER.debug("Skipping non-JSON %s output: %s", self._cli_name, line[:200])
                    continue
                if not isinstance(event, Mapping):
                    continue

                error = _explicit_error(event)
                if error is not None:
                    had_error = True
                    yield ErrorEvent(message=f"{PROVIDER} error: {error}")
                    break

                text = _assistant_text(event)
                if text:
                    parts.append(text)
                    yield TextDelta(text=text)

            if not had_error:
                exit_code = await self._race(proc.wait())
                with contextlib.suppress(asyncio.TimeoutError):
                    await asyncio.wait_for(asyncio.shield(stderr_task), timeout=self._grace_seconds)
                if exit_code != 0:
                    had_error = True
                    detail = tail.preview() or f"{self._cli_name} exited with code {exit_code}"
                    LOGGER.warning("%s exited with code %s: %s", self._cli_name, exit_code, tail.text[-2048:])
                    yield ErrorEvent(message=f"{PROVIDER} error: {detail}")
        finally:
            await self._terminate(proc)
            if proc.returncode is not None and exit_code is None and not had_error:
                exit_code = proc.returncode
            if not stderr_task.done():
                stderr_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await stderr_task

        self.result = SubprocessResult(
            content="" if had_error else "".join(parts),
            had_error=had_error,
            exit_code=exit_code,
            stderr_tail=tail.text,
        )


class CodexSubprocessAdapter:
    """Launches :class:`SubprocessStream` runs of the Codex CLI."""

    def __init__(
        self,
        *,
        executable: str = "codex",
        grace_seconds: float = 2.0,
        env: Mapping[str, str] | None = None,
    ) -> None:
        self.executable = executable
        self.grace_seconds = grace_seconds
        self._env = env

    def stream(
        self,
        prompt: str,
        model: str,
        cwd: Path | str | None = None,
        signal: AbortSignal | None = None,
    ) -> SubprocessStream:
        argv = build_codex_command(self.executable, model)
        LOGGER.debug("Running %s for model %s in %s", self.executable, model, cwd)
        return SubprocessStream(
            argv=argv,
            prompt=prompt,
            cwd=cwd,
            signal=signal,
            grace_seconds=self.grace_seconds,
            env=self._env,
        )
