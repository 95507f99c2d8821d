"""Shared fixtures and fake executors."""

from __future__ import annotations

from collections.abc import Awaitable, Callable

import pytest

from mcgravity.core.cancel import CancelFlag
from mcgravity.core.events import EventSink
from mcgravity.core.retry import RetryConfig
from mcgravity.executors.base import BaseExecutor, CliOutput, OutputQueue
from mcgravity.storage.paths import WorkspacePaths

Behavior = Callable[[str, OutputQueue, CancelFlag, int], Awaitable[int]]


class FakeExecutor(BaseExecutor):
    """Executor driven by an async callback; records every input it gets."""

    def __init__(self, behavior: Behavior, name: str = "Fake", command: str = "fake") -> None:
        self._behavior = behavior
        self._name = name
        self._command = command
        self.inputs: list[str] = []

    @property
    def name(self) -> str:
        return self._name

    @property
    def command(self) -> str:
        return self._command

    @property
    def calls(self) -> int:
        return len(self.inputs)

    async def execute(self, input_text: str, output: OutputQueue, cancel: CancelFlag) -> int:
        self.inputs.append(input_text)
        return await self._behavior(input_text, output, cancel, len(self.inputs))


def exits_with(code: int, *lines: str) -> Behavior:
    async def behavior(input_text, output, cancel, call):
        for line in lines:
            await output.put(CliOutput.stdout(line))
        return code

    return behavior


def raises(error: Exception) -> Behavior:
    async def behavior(input_text, output, cancel, call):
        raise error

    return behavior


@pytest.fixture
def fast_retry():
    return RetryConfig(max_attempts=3, base_interval=0, interval_increment=0)


@pytest.fixture
def sink():
    return EventSink()


@pytest.fixture
def cancel():
    return CancelFlag()


@pytest.fixture
def paths(tmp_path):
    ws = WorkspacePaths(tmp_path)
    ws.ensure_dirs()
    return ws
