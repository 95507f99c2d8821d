"""Pending/done task files and ledger persistence.

The public coroutines wrap blocking filesystem calls in ``asyncio.to_thread``
so the event loop keeps streaming executor output meanwhile.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Iterable, Sequence
from datetime import datetime
from pathlib import Path

from mcgravity.utils.logging import get_logger

log = get_logger(__name__)

TODO_EXTENSIONS = (".md",)


def _created_at(st: os.stat_result) -> float:
    # st_birthtime is missing on most Linux filesystems.
    return getattr(st, "st_birthtime", st.st_mtime)


def _scan(todo_dir: Path, extensions: Sequence[str]) -> list[Path]:
    if not todo_dir.is_dir():
        return []
    found: list[tuple[float, str, Path]] = []
    for entry in todo_dir.iterdir():
        if entry.suffix not in extensions:
            continue
        try:
            st = entry.stat()
        except OSError:
            continue
        if not entry.is_file():
            continue
        found.append((_created_at(st), entry.name, entry))
    found.sort()
    return [path for _, _, path in found]


async def scan_todo_files(todo_dir: Path, extensions: Sequence[str] = TODO_EXTENSIONS) -> list[Path]:
    """Task files directly inside ``todo_dir``, oldest first.

    Subdirectories (including ``done/``) are skipped; a missing directory
    yields an empty list.
    """
    return await asyncio.to_thread(_scan, todo_dir, extensions)


def archive_destination(file: Path, done_dir: Path, now: datetime | None = None) -> Path:
    """Where ``file`` lands in ``done_dir`` without overwriting anything."""
    dest = done_dir / file.name
    if not dest.exists():
        return dest
    stamp = (now or datetime.now()).strftime("%Y%m%d_%H%M%S")
    dest = done_dir / f"{file.stem}_{stamp}.md"
    counter = 1
    while dest.exists():
        dest = done_dir / f"{file.stem}_{stamp}_{counter}.md"
        counter += 1
    return dest


def _move(files: Iterable[Path], done_dir: Path) -> list[Path]:
    done_dir.mkdir(parents=True, exist_ok=True)
    moved: list[Path] = []
    for file in files:
        dest = archive_destination(file, done_dir)
        file.rename(dest)
        log.debug("todo_archived", source=str(file), dest=str(dest))
        moved.append(dest)
    return moved


async def move_to_done(files: Iterable[Path], done_dir: Path) -> list[Path]:
    """Archive ``files`` into ``done_dir``; returns the destinations in order."""
    return await asyncio.to_thread(_move, list(files), done_dir)


async def read_file_content(path: Path) -> str:
    return await asyncio.to_thread(path.read_text, encoding="utf-8")


def _write(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")


async def persist_task_text(path: Path, text: str) -> None:
    await asyncio.to_thread(_write, path, text)
