"""Orchestration flow phases.

Each phase is its own frozen dataclass; ``FlowPhase`` is the union of them.
Only the flow runner creates phases, observers receive them through
``PhaseChanged`` events.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union


class _Phase:
    """Shared behavior for every phase variant."""

    terminal = False

    def description(self) -> str:
        raise NotImplementedError

    @property
    def is_terminal(self) -> bool:
        return self.terminal


@dataclass(frozen=True)
class Idle(_Phase):
    def description(self) -> str:
        return "Idle"


@dataclass(frozen=True)
class ReadingInput(_Phase):
    def description(self) -> str:
        return "Reading input file"


@dataclass(frozen=True)
class CheckingDoneFiles(_Phase):
    def description(self) -> str:
        return "Loading completed task context"


@dataclass(frozen=True)
class RunningPlanning(_Phase):
    model: str
    attempt: int

    def description(self) -> str:
        return f"Running {self.model} (attempt {self.attempt})"


@dataclass(frozen=True)
class CheckingTodoFiles(_Phase):
    def description(self) -> str:
        return "Checking for todo files"


@dataclass(frozen=True)
class NoTodoFiles(_Phase):
    terminal = True

    def description(self) -> str:
        return "No todo files found"


@dataclass(frozen=True)
class ProcessingTodos(_Phase):
    current: int
    total: int

    def description(self) -> str:
        return f"Processing todos ({self.current}/{self.total})"


@dataclass(frozen=True)
class RunningExecution(_Phase):
    model: str
    file_index: int
    attempt: int

    def description(self) -> str:
        return f"Running {self.model} on file {self.file_index} (attempt {self.attempt})"


@dataclass(frozen=True)
class CycleComplete(_Phase):
    iteration: int

    def description(self) -> str:
        return f"Cycle {self.iteration} complete"


@dataclass(frozen=True)
class MovingCompletedFiles(_Phase):
    def description(self) -> str:
        return "Updating summary, removing completed todos"


@dataclass(frozen=True)
class Completed(_Phase):
    terminal = True

    def description(self) -> str:
        return "Completed"


@dataclass(frozen=True)
class Failed(_Phase):
    reason: str
    terminal = True

    def description(self) -> str:
        return f"Failed: {self.reason}"


FlowPhase = Union[
    Idle,
    ReadingInput,
    CheckingDoneFiles,
    RunningPlanning,
    CheckingTodoFiles,
    NoTodoFiles,
    ProcessingTodos,
    RunningExecution,
    CycleComplete,
    MovingCompletedFiles,
    Completed,
    Failed,
]
