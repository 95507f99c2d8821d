"""Spawn an AI CLI, stream its output line by line, kill it on cancel."""

from __future__ import annotations

import asyncio
import ctypes
import ctypes.util
import json
import re
import signal
from collections.abc import Awaitable, Callable, Sequence
from pathlib import Path
from typing import Any

from mcgravity.core.cancel import CancelFlag
from mcgravity.core.resolver import CommandResolution, resolve_command
from mcgravity.executors.base import (
    CliOutput,
    CommandNotFoundError,
    ExecutorError,
    OutputQueue,
    ShutdownSignaled,
)
from mcgravity.utils.logging import get_logger
from mcgravity.utils.platform import get_platform, get_user_shell

log = get_logger(__name__)

# Claude's stream-json records can be far longer than asyncio's 64 KiB default.
# Lines past this are cut and marked, never dropped whole.
STREAM_LIMIT = 16 * 1024 * 1024
TRUNCATED_LINE_MARKER = " [... line truncated ...]"

_SHELL_SAFE_RE = re.compile(r"^[A-Za-z0-9\-_./]+$")

_PR_SET_PDEATHSIG = 1

LineHandler = Callable[[str, OutputQueue], Awaitable[None]]


# ---------------------------------------------------------------------------
# Command line construction
# ---------------------------------------------------------------------------

def shell_escape_arg(arg: str) -> str:
    """Quote ``arg`` for a POSIX shell command line."""
    if arg and _SHELL_SAFE_RE.match(arg):
        return arg
    return "'" + arg.replace("'", "'\\''") + "'"


def build_command(command: str, args: Sequence[str], resolution: CommandResolution) -> list[str]:
    """Turn a resolved command into the argv to spawn."""
    if not resolution.is_available:
        raise CommandNotFoundError(command)
    if resolution.requires_shell:
        line = " ".join([command, *(shell_escape_arg(a) for a in args)])
        return [get_user_shell(), "-l", "-i", "-c", line]
    return [resolution.detail or command, *args]


# ---------------------------------------------------------------------------
# Child setup
# ---------------------------------------------------------------------------

def _load_libc() -> Any:
    if get_platform() != "linux":
        return None
    name = ctypes.util.find_library("c") or "libc.so.6"
    try:
        return ctypes.CDLL(name, use_errno=True)
    except OSError as e:
        log.warning("libc_unavailable", error=str(e))
        return None


_libc = _load_libc()


def _die_with_parent() -> None:
    # Runs in the forked child before exec.
    _libc.prctl(_PR_SET_PDEATHSIG, signal.SIGKILL)


# ---------------------------------------------------------------------------
# Line handlers
# ---------------------------------------------------------------------------

async def forward_plain_line(line: str, output: OutputQueue) -> None:
    await output.put(CliOutput.stdout(line))


def parse_claude_stream_json(line: str) -> str | None:
    """Extract the displayable text of one ``--output-format stream-json`` record.

    Returns ``None`` for records that carry nothing worth showing (tool use,
    user echoes, unknown types). Raises ``ValueError`` if ``line`` is not JSON.
    """
    record = json.loads(line)
    if not isinstance(record, dict):
        return None

    kind = record.get("type")
    subtype = record.get("subtype")

    if kind == "assistant":
        message = record.get("message")
        content = message.get("content") if isinstance(message, dict) else None
        if not isinstance(content, list):
            return None
        texts = [
            item["text"]
            for item in content
            if isinstance(item, dict) and item.get("type") == "text" and isinstance(item.get("text"), str)
        ]
        return "".join(texts) if texts else None

    if kind == "result":
        if subtype == "error":
            is_error = record.get("is_error")
            return f"[Error: is_error={is_error if isinstance(is_error, bool) else None}]"
        if subtype == "success":
            result = record.get("result")
            return result if isinstance(result, str) else None
        return None

    if kind == "system" and subtype == "init":
        return "[Claude Code session started]"

    return None


async def forward_claude_line(line: str, output: OutputQueue) -> None:
    try:
        text = parse_claude_stream_json(line)
    except ValueError:
        # Not JSON: pass through anything non-blank so it can be debugged.
        if line.strip():
            await output.put(CliOutput.stdout(line))
        return
    if text is not None:
        await output.put(CliOutput.stdout(text))


# ---------------------------------------------------------------------------
# Running
# ---------------------------------------------------------------------------

async def _read_line(stream: asyncio.StreamReader) -> tuple[bytes, bool] | None:
    """Next raw line and whether it was cut; ``None`` at EOF.

    A line longer than the reader's buffer is gathered chunk by chunk, keeping
    the first ``STREAM_LIMIT`` bytes, so one oversized record does not end the
    stream.
    """
    parts: list[bytes] = []
    size = 0
    truncated = False
    while True:
        try:
            chunk = await stream.readuntil(b"\n")
            done = True
        except asyncio.IncompleteReadError as e:
            chunk = e.partial
            done = True
            if not chunk and not parts:
                return None
        except asyncio.LimitOverrunError as e:
            chunk = await stream.read(e.consumed)
            done = False

        room = STREAM_LIMIT - size
        if len(chunk) > room:
            chunk = chunk[:room]
            truncated = True
        parts.append(chunk)
        size += len(chunk)
        if done:
            return b"".join(parts), truncated


async def _read_lines(
    stream: asyncio.StreamReader,
    output: OutputQueue,
    handler: LineHandler,
) -> None:
    while True:
        line = await _read_line(stream)
        if line is None:
            return
        raw, truncated = line
        text = raw.decode("utf-8", errors="replace").rstrip("\r\n")
        if truncated:
            log.warning("output_line_truncated", limit=STREAM_LIMIT)
            text += TRUNCATED_LINE_MARKER
        await handler(text, output)


async def _forward_stderr(line: str, output: OutputQueue) -> None:
    await output.put(CliOutput.stderr(line))


async def run_process_with_output(
    command: str,
    args: Sequence[str],
    output: OutputQueue,
    cancel: CancelFlag,
    stdout_handler: LineHandler = forward_plain_line,
    cwd: Path | None = None,
) -> int:
    """Run ``command`` with ``args`` in ``cwd`` and return its exit code.

    Every stdout line goes through ``stdout_handler``; stderr lines are put on
    ``output`` unchanged. All output is on the queue by the time this returns.
    If ``cancel`` is set first the child is killed and ``ShutdownSignaled`` is
    raised. The queue is never closed here.
    """
    if cancel.is_set:
        raise ShutdownSignaled(f"{command} not started: shutdown requested")

    resolution = await asyncio.to_thread(resolve_command, command)
    argv = build_command(command, args, resolution)

    log.info(
        "process_spawning",
        command=command,
        resolution=resolution.kind,
        args=len(args),
        cwd=str(cwd) if cwd else None,
    )
    proc = await asyncio.create_subprocess_exec(
        *argv,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        limit=STREAM_LIMIT,
        cwd=cwd,
        preexec_fn=_die_with_parent if _libc is not None else None,
    )
    if proc.stdout is None or proc.stderr is None:
        proc.kill()
        await proc.wait()
        raise ExecutorError(f"{command}: output pipes were not opened")

    readers = [
        asyncio.create_task(_read_lines(proc.stdout, output, stdout_handler)),
        asyncio.create_task(_read_lines(proc.stderr, output, _forward_stderr)),
    ]
    waiter = asyncio.create_task(proc.wait())
    cancelled = asyncio.create_task(cancel.wait())

    try:
        done, _ = await asyncio.wait({waiter, cancelled}, return_when=asyncio.FIRST_COMPLETED)

        if waiter not in done:
            log.info("process_killing", command=command, pid=proc.pid)
            if proc.returncode is None:
                proc.kill()
            await waiter
            for reader in readers:
                reader.cancel()
            await asyncio.gather(*readers, return_exceptions=True)
            raise ShutdownSignaled(f"{command} killed: shutdown requested")

        # Drain everything the child wrote before reporting the exit.
        await asyncio.gather(*readers)
    finally:
        cancelled.cancel()
        if proc.returncode is None:
            proc.kill()
            await proc.wait()
        for reader in readers:
            if not reader.done():
                reader.cancel()

    code = waiter.result()
    log.info("process_exited", command=command, exit_code=code)
    return code
