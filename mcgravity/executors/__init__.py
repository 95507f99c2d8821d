"""AI CLI executors and the model registry."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from mcgravity.core.resolver import check_cli_available
from mcgravity.executors.base import (
    BaseExecutor,
    CliOutput,
    CommandNotFoundError,
    ExecutorError,
    MaxAttemptsExceeded,
    OutputQueue,
    ShutdownSignaled,
)
from mcgravity.executors.claude import ClaudeExecutor
from mcgravity.executors.codex import CodexExecutor
from mcgravity.executors.gemini import GeminiExecutor


class Model(str, Enum):
    CODEX = "codex"
    CLAUDE = "claude"
    GEMINI = "gemini"

    @property
    def display_name(self) -> str:
        return _DISPLAY_NAMES[self]

    @property
    def command(self) -> str:
        return self.value

    def executor(self, cwd: Path | None = None) -> BaseExecutor:
        return _EXECUTORS[self](cwd=cwd)


_DISPLAY_NAMES = {
    Model.CODEX: "Codex",
    Model.CLAUDE: "Claude Code",
    Model.GEMINI: "Gemini",
}

_EXECUTORS: dict[Model, type[BaseExecutor]] = {
    Model.CODEX: CodexExecutor,
    Model.CLAUDE: ClaudeExecutor,
    Model.GEMINI: GeminiExecutor,
}


def create_executor(model: Model | str, cwd: Path | None = None) -> BaseExecutor:
    """Build the executor for ``model`` (an enum member or its value), run in ``cwd``."""
    return Model(model).executor(cwd=cwd)


@dataclass(frozen=True)
class ModelAvailability:
    codex: bool = False
    claude: bool = False
    gemini: bool = False

    @classmethod
    def check_all(cls) -> ModelAvailability:
        """Resolve each CLI once. May spawn a login shell per missing tool."""
        return cls(
            codex=check_cli_available(Model.CODEX.command),
            claude=check_cli_available(Model.CLAUDE.command),
            gemini=check_cli_available(Model.GEMINI.command),
        )

    def is_available(self, model: Model) -> bool:
        return getattr(self, model.value)

    def any_available(self) -> bool:
        return self.codex or self.claude or self.gemini


__all__ = [
    "BaseExecutor",
    "CliOutput",
    "ClaudeExecutor",
    "CodexExecutor",
    "CommandNotFoundError",
    "ExecutorError",
    "GeminiExecutor",
    "MaxAttemptsExceeded",
    "Model",
    "ModelAvailability",
    "OutputQueue",
    "ShutdownSignaled",
    "create_executor",
]
