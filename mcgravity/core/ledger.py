"""The task ledger: plan text plus a ``<COMPLETED_TASKS>`` block.

A ledger looks like::

    Build a CLI for ...

    <COMPLETED_TASKS>
    - .mcgravity/todo/done/task-001.md
    - .mcgravity/todo/done/task-002.md
    </COMPLETED_TASKS>

Every function here is pure text manipulation except ``summarize_task_files``,
which reads the files it summarizes.
"""

from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path

from mcgravity.storage.todo import read_file_content

OPEN_TAG = "<COMPLETED_TASKS>"
CLOSE_TAG = "</COMPLETED_TASKS>"

MAX_SNIPPET_LINES = 5
MAX_SUMMARY_LENGTH = 100
MAX_ENTRY_LENGTH = 500
UNREADABLE_PLACEHOLDER = "[Could not read file content]"


def _block_bounds(text: str) -> tuple[int, int] | None:
    """(content start, close tag start) of the first well-formed block."""
    open_pos = text.find(OPEN_TAG)
    if open_pos == -1:
        return None
    start = open_pos + len(OPEN_TAG)
    close_pos = text.find(CLOSE_TAG, start)
    if close_pos == -1:
        return None
    return start, close_pos


def extract_completed_tasks_summary(text: str) -> str:
    bounds = _block_bounds(text)
    if bounds is None:
        return ""
    start, end = bounds
    return text[start:end].strip()


def upsert_completed_task_summary(text: str, line: str) -> str:
    """Record ``line`` in the completed block, creating the block if needed.

    Idempotent: if the trimmed line already appears anywhere in ``text`` the
    text is returned unchanged.
    """
    entry = line.strip()
    if entry in text:
        return text

    bounds = _block_bounds(text)
    if bounds is None:
        sep = "" if text.endswith("\n") else "\n"
        return f"{text}{sep}\n{OPEN_TAG}\n{entry}\n{CLOSE_TAG}\n"

    start, close_pos = bounds
    before, after = text[:close_pos], text[close_pos:]
    if not text[start:close_pos].strip():
        return f"{before}{entry}\n{after}"
    sep = "" if before.endswith("\n") else "\n"
    return f"{before}{sep}{entry}\n{after}"


async def summarize_task_files(paths: Sequence[Path]) -> str:
    """Filename plus the first few lines of each file, for the planner."""
    entries = []
    for path in paths:
        try:
            content = await read_file_content(path)
        except (OSError, UnicodeDecodeError):
            snippet = UNREADABLE_PLACEHOLDER
        else:
            lines = content.splitlines()
            snippet = "\n".join(lines[:MAX_SNIPPET_LINES])
            if len(lines) > MAX_SNIPPET_LINES:
                snippet += "\n..."
        entries.append(f"- {path.name}:\n{snippet}")
    return "\n\n".join(entries)


def _relative(path: Path, base: Path | None) -> Path:
    base = Path.cwd() if base is None else base
    try:
        return path.relative_to(base)
    except ValueError:
        return path


def reference_line(path: Path, base: Path | None = None) -> str:
    return f"- {_relative(path, base).as_posix()}"


def summarize_completed_tasks(paths: Sequence[Path], base: Path | None = None) -> str:
    return "\n".join(reference_line(p, base) for p in paths)


def truncate_summary(summary: str, max_len: int) -> str:
    if len(summary) <= max_len:
        return summary
    return summary[: max(max_len - 3, 0)] + "..."


def extract_task_summary(content: str, max_len: int = MAX_SUMMARY_LENGTH) -> str:
    """Title and objective of a task file, e.g. ``Task 001: Add X\\nMake X work``.

    Looks for a ``# Task ...`` heading and the first line under
    ``## Objective``; falls back to the first non-empty line.
    """
    title = None
    objective = None
    first_line = None
    in_objective = False

    for raw in content.splitlines():
        line = raw.strip()
        if first_line is None and line:
            first_line = line
        if title is None and line.startswith("# Task"):
            title = line[2:]
        if line.startswith("## Objective"):
            in_objective = True
            continue
        if in_objective:
            if line.startswith("#"):
                break
            if line:
                objective = line
                break

    if title and objective:
        summary = f"{title}\n{objective}"
    else:
        summary = title or objective or first_line or ""
    return truncate_summary(summary, max_len)


def normalize_summary_entry(summary: str, max_len: int = MAX_ENTRY_LENGTH) -> str | None:
    """Collapse ``summary`` to one line for the ledger; ``None`` if blank."""
    single = " ".join(summary.split())
    if not single:
        return None
    return truncate_summary(single, max_len)
