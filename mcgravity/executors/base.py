"""Base executor interface."""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Literal

from mcgravity.core.cancel import CancelFlag
from mcgravity.core.resolver import check_cli_available


class ExecutorError(RuntimeError):
    """An executor call failed."""


class ShutdownSignaled(ExecutorError):
    """Cancellation was requested while an executor call was in flight."""


class CommandNotFoundError(ExecutorError):
    def __init__(self, command: str) -> None:
        self.command = command
        super().__init__(
            f"CLI command '{command}' not found. Ensure it is installed and available in PATH, "
            f"or via shell alias/function. Run `which {command}` or check your shell profile."
        )


class MaxAttemptsExceeded(ExecutorError):
    pass


@dataclass(frozen=True)
class CliOutput:
    stream: Literal["stdout", "stderr"]
    text: str

    @classmethod
    def stdout(cls, text: str) -> CliOutput:
        return cls("stdout", text)

    @classmethod
    def stderr(cls, text: str) -> CliOutput:
        return cls("stderr", text)


# ``None`` on the queue marks the end of an attempt's output.
OutputQueue = asyncio.Queue["CliOutput | None"]


class BaseExecutor(ABC):
    """One external AI CLI tool.

    Executors hold no per-call state, so a single instance can serve any
    number of concurrent calls. Children are started in ``cwd`` (the process
    cwd when ``None``), which should be the project root the flow works on.
    """

    def __init__(self, cwd: Path | None = None) -> None:
        self.cwd = cwd

    @property
    @abstractmethod
    def name(self) -> str:
        """Display name, e.g. ``Claude Code``."""
        ...

    @property
    @abstractmethod
    def command(self) -> str:
        """Binary name looked up on PATH, e.g. ``claude``."""
        ...

    @abstractmethod
    async def execute(self, input_text: str, output: OutputQueue, cancel: CancelFlag) -> int:
        """Run the tool on ``input_text`` and return its exit code.

        Output lines are put on ``output`` as they arrive; none are put after
        this returns. Raises ``ShutdownSignaled`` if ``cancel`` is set first.
        """
        ...

    def is_available(self) -> bool:
        return check_cli_available(self.command)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(command={self.command!r})"
