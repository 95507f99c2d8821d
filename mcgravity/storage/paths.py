"""Locations of the workspace files the flow reads and writes."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

STATE_DIR_NAME = ".mcgravity"


@dataclass(frozen=True)
class WorkspacePaths:
    """Paths rooted at one project directory.

    ``.mcgravity/task.md`` holds the ledger, ``.mcgravity/todo/`` the pending
    task files and ``.mcgravity/todo/done/`` the archived ones.
    """

    base: Path

    @classmethod
    def from_cwd(cls) -> WorkspacePaths:
        return cls(Path.cwd())

    @property
    def state_dir(self) -> Path:
        return self.base / STATE_DIR_NAME

    @property
    def task_file(self) -> Path:
        return self.state_dir / "task.md"

    @property
    def todo_dir(self) -> Path:
        return self.state_dir / "todo"

    @property
    def done_dir(self) -> Path:
        return self.todo_dir / "done"

    def ensure_dirs(self) -> None:
        self.todo_dir.mkdir(parents=True, exist_ok=True)
        self.done_dir.mkdir(parents=True, exist_ok=True)
