"""Linear backoff policy and the retry loop around executor calls."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass

from mcgravity.core.cancel import CancelFlag
from mcgravity.core.events import ClearOutput, EventSink, OutputLine, RetryWait
from mcgravity.core.flow import FlowPhase
from mcgravity.executors.base import (
    BaseExecutor,
    MaxAttemptsExceeded,
    OutputQueue,
    ShutdownSignaled,
)
from mcgravity.utils.logging import get_logger

log = get_logger(__name__)

# Upper bound on the text kept from one attempt for the caller.
MAX_CAPTURED_BYTES = 100_000


@dataclass(frozen=True)
class RetryConfig:
    max_attempts: int = 100
    base_interval: float = 10.0
    interval_increment: float = 10.0

    def wait_duration(self, attempt: int) -> float:
        """Seconds to wait after 0-indexed failed ``attempt``."""
        return self.base_interval + attempt * self.interval_increment

    def has_attempts_remaining(self, attempts_made: int) -> bool:
        return attempts_made < self.max_attempts


class _Capture:
    """Accumulates attempt output up to ``MAX_CAPTURED_BYTES`` of UTF-8."""

    def __init__(self, limit: int = MAX_CAPTURED_BYTES) -> None:
        self._limit = limit
        self._size = 0
        self._parts: list[str] = []
        self.truncated = False

    def add(self, text: str) -> None:
        if self.truncated:
            return
        chunk = text + "\n"
        encoded = chunk.encode("utf-8")
        room = self._limit - self._size
        if len(encoded) > room:
            self._parts.append(encoded[:room].decode("utf-8", errors="ignore"))
            self._size = self._limit
            self.truncated = True
            return
        self._parts.append(chunk)
        self._size += len(encoded)

    def text(self) -> str:
        return "".join(self._parts)


async def _forward_output(output: OutputQueue, events: EventSink, capture: _Capture) -> None:
    while True:
        item = await output.get()
        if item is None:
            return
        capture.add(item.text)
        make = OutputLine.stderr if item.stream == "stderr" else OutputLine.stdout
        for line in item.text.splitlines():
            await events.output(make(line))


def _format_secs(secs: float) -> str:
    return f"{secs:g}"


async def run_with_retry(
    input_text: str,
    executor: BaseExecutor,
    phase_builder: Callable[[int], FlowPhase],
    config: RetryConfig,
    events: EventSink,
    cancel: CancelFlag,
) -> str:
    """Run ``executor`` until it exits 0 and return the text it printed.

    Each attempt announces ``phase_builder(attempt)`` (1-indexed) and streams
    the executor's lines as ``Output`` events. Between attempts the caller sees
    ``RetryWait(secs)``, a warning, then ``RetryWait(None)`` and ``ClearOutput``.

    Raises ``ShutdownSignaled`` if ``cancel`` is set and ``MaxAttemptsExceeded``
    once attempts run out (chained to the executor's last error, if it raised).
    """
    name = executor.name

    for attempt in range(1, config.max_attempts + 1):
        if cancel.is_set:
            raise ShutdownSignaled(f"{name}: shutdown requested")

        await events.phase(phase_builder(attempt))
        log.info("executor_attempt", executor=name, attempt=attempt, max_attempts=config.max_attempts)
        log.debug("executor_input", executor=name, input=input_text)

        output: OutputQueue = asyncio.Queue()
        capture = _Capture()
        forwarder = asyncio.create_task(_forward_output(output, events, capture))

        error: Exception | None = None
        code: int | None = None
        try:
            code = await executor.execute(input_text, output, cancel)
        except ShutdownSignaled:
            raise
        except Exception as e:
            error = e
        finally:
            await output.put(None)
            await forwarder

        if error is None and code == 0:
            if capture.truncated:
                log.warning("executor_output_truncated", executor=name, limit=MAX_CAPTURED_BYTES)
            log.info("executor_succeeded", executor=name, attempt=attempt)
            return capture.text()

        if cancel.is_set:
            raise ShutdownSignaled(f"{name}: shutdown requested")

        if not config.has_attempts_remaining(attempt):
            log.error("executor_exhausted", executor=name, attempts=attempt, exit_code=code, error=str(error) if error else None)
            if error is not None:
                raise MaxAttemptsExceeded(str(error)) from error
            raise MaxAttemptsExceeded(f"{name} exited with code {code}")

        secs = config.wait_duration(attempt - 1)
        if error is not None:
            message = f"{name} error: {error}, retrying in {_format_secs(secs)}s..."
        else:
            message = f"{name} exited with code {code}, retrying in {_format_secs(secs)}s..."
        log.warning("executor_retrying", executor=name, attempt=attempt, wait=secs, exit_code=code, error=str(error) if error else None)

        await events.emit(RetryWait(seconds=secs))
        await events.warning(message)
        await asyncio.sleep(secs)
        await events.emit(RetryWait(seconds=None))
        await events.emit(ClearOutput())

    raise MaxAttemptsExceeded(f"Max retries exceeded for {name}")
