"""The plan/execute orchestration loop.

One ``FlowRunner.run`` call drives the whole flow:

1. read the plan (file or literal text) and fold any legacy ``done/`` files
   into the ledger
2. each cycle: run the planning executor over the ledger, then the execution
   executor over every pending task file, archiving and recording each one
   that succeeds
3. stop when planning leaves nothing pending, planning fails for good, the
   iteration cap is hit or the cancel flag is set

Everything observers need arrives as ``FlowEvent``s on the sink's queue; the
ledger text itself is owned by the runner and only published as copies.
"""

from __future__ import annotations

import asyncio
from pathlib import Path

from mcgravity.core.cancel import CancelFlag
from mcgravity.core.events import (
    ClearOutput,
    CurrentFile,
    EventSink,
    TaskTextUpdated,
    TodoFilesUpdated,
)
from mcgravity.core.flow import (
    CheckingDoneFiles,
    CheckingTodoFiles,
    Completed,
    CycleComplete,
    Failed,
    MovingCompletedFiles,
    NoTodoFiles,
    ProcessingTodos,
    ReadingInput,
    RunningExecution,
    RunningPlanning,
)
from mcgravity.core.ledger import (
    MAX_ENTRY_LENGTH,
    extract_completed_tasks_summary,
    extract_task_summary,
    normalize_summary_entry,
    reference_line,
    summarize_completed_tasks,
    summarize_task_files,
    truncate_summary,
    upsert_completed_task_summary,
)
from mcgravity.core.prompts import (
    discover_guideline_files,
    wrap_for_execution,
    wrap_for_planning,
    wrap_for_task_summary,
)
from mcgravity.core.retry import RetryConfig, run_with_retry
from mcgravity.executors.base import BaseExecutor, ExecutorError, ShutdownSignaled
from mcgravity.storage.paths import WorkspacePaths
from mcgravity.storage.todo import move_to_done, persist_task_text, read_file_content, scan_todo_files
from mcgravity.utils.logging import get_logger

log = get_logger(__name__)


class FlowRunner:
    def __init__(
        self,
        planning_executor: BaseExecutor,
        execution_executor: BaseExecutor,
        paths: WorkspacePaths,
        events: EventSink,
        cancel: CancelFlag,
        retry_config: RetryConfig | None = None,
        max_iterations: int | None = None,
        summarize_completions: bool = False,
    ) -> None:
        self.planning_executor = planning_executor
        self.execution_executor = execution_executor
        self.paths = paths
        self.events = events
        self.cancel = cancel
        self.retry_config = retry_config or RetryConfig()
        self.max_iterations = max_iterations
        self.summarize_completions = summarize_completions
        self.task_text = ""

    async def run(self, input_path: Path | None = None, input_text: str = "") -> None:
        """Run until done, failed or cancelled; exactly one ``Done`` is emitted.

        Raises ``OSError`` or ``UnicodeDecodeError`` if the input file cannot
        be read (before any ``Done``) and ``ExecutorError`` if planning exhausts its retries.
        """
        self.task_text = await self._read_input(input_path, input_text)
        if await self._stop_if_cancelled():
            return

        await self._migrate_done_files()
        if await self._stop_if_cancelled():
            return

        try:
            await self._loop()
        except ShutdownSignaled:
            log.info("flow_cancelled")
            await self.events.done()

    # -- startup ------------------------------------------------------------

    async def _read_input(self, input_path: Path | None, input_text: str) -> str:
        await self.events.phase(ReadingInput())
        if input_path is None:
            await self.events.success(f"Using entered task text ({len(input_text.encode('utf-8'))} bytes)")
            return input_text

        await self.events.running("Reading input file...")
        try:
            text = await read_file_content(input_path)
        except (OSError, UnicodeDecodeError) as e:
            await self.events.error(f"Failed to read input file: {e}")
            log.error("input_read_failed", path=str(input_path), error=str(e))
            raise
        await self.events.success(f"Read input file ({len(text.encode('utf-8'))} bytes)")
        return text

    async def _migrate_done_files(self) -> None:
        """Fold files left in ``done/`` by older runs into the ledger once."""
        await self.events.phase(CheckingDoneFiles())
        done_files = await scan_todo_files(self.paths.done_dir)
        if not done_files:
            await self.events.info("No legacy done files to migrate")
            return

        await self.events.info(f"Found {len(done_files)} legacy done file(s) to migrate")
        updated = self.task_text
        for line in summarize_completed_tasks(done_files, self.paths.base).splitlines():
            updated = upsert_completed_task_summary(updated, line)
        if updated == self.task_text:
            return

        self.task_text = updated
        log.info("legacy_done_files_migrated", count=len(done_files))
        await self._persist("Failed to persist migrated task.md")

    # -- main loop ----------------------------------------------------------

    async def _loop(self) -> None:
        cycle = 0
        while True:
            if await self._stop_if_cancelled():
                return
            cycle += 1

            if self.max_iterations is not None and cycle > self.max_iterations:
                await self.events.info(f"Reached maximum iterations ({self.max_iterations}). Stopping flow.")
                await self.events.phase(Completed())
                await self.events.done()
                return

            pending = await scan_todo_files(self.paths.todo_dir)
            if await self._stop_if_cancelled():
                return

            completed_summary = extract_completed_tasks_summary(self.task_text)
            await self._plan(cycle, pending, completed_summary)
            if await self._stop_if_cancelled():
                return

            todo_files = await self._check_todos()
            if todo_files is None:
                return
            if await self._stop_if_cancelled():
                return

            await self._process_todos(todo_files)
            if await self._stop_if_cancelled():
                return

            await self.events.phase(CycleComplete(iteration=cycle))
            await self.events.info(f"Cycle {cycle} complete, starting next cycle...")
            self.events.emit_nowait(CurrentFile(name=None))
            log.info("cycle_complete", cycle=cycle)

    async def _plan(self, cycle: int, pending: list[Path], completed_summary: str) -> None:
        executor = self.planning_executor
        name = executor.name

        await self.events.phase(RunningPlanning(model=name, attempt=1))
        await self.events.running(f"Starting {name} CLI (cycle {cycle})...")
        await self.events.emit(ClearOutput())
        log.info("planning_started", cycle=cycle, executor=name, pending=len(pending))

        pending_summary = await summarize_task_files(pending)
        guidelines = await asyncio.to_thread(discover_guideline_files, self.paths.base)
        prompt = wrap_for_planning(self.task_text, pending_summary, completed_summary, guidelines)
        try:
            await run_with_retry(
                prompt,
                executor,
                lambda attempt: RunningPlanning(model=name, attempt=attempt),
                self.retry_config,
                self.events,
                self.cancel,
            )
        except ShutdownSignaled:
            raise
        except ExecutorError as e:
            log.error("planning_failed", cycle=cycle, executor=name, error=str(e))
            await self.events.phase(Failed(reason=f"{name} failed after max retries: {e}"))
            await self.events.error(f"{name} failed: {e}")
            await self.events.done()
            raise

        await self.events.success(f"{name} completed successfully")

    async def _check_todos(self) -> list[Path] | None:
        """Pending files after planning, or ``None`` once the flow is finished."""
        await self.events.phase(CheckingTodoFiles())
        await self.events.running("Checking for todo files...")

        todo_files = await scan_todo_files(self.paths.todo_dir)
        if not todo_files:
            await self.events.phase(NoTodoFiles())
            await self.events.success("No todo files found - all done!")
            await self.events.done()
            log.info("flow_finished", reason="no_todo_files")
            return None

        await self.events.emit(TodoFilesUpdated(files=list(todo_files)))
        await self.events.success(f"Found {len(todo_files)} todo files")
        return todo_files

    async def _process_todos(self, todo_files: list[Path]) -> None:
        executor = self.execution_executor
        name = executor.name
        total = len(todo_files)
        completed_summary = extract_completed_tasks_summary(self.task_text)

        guidelines = await asyncio.to_thread(discover_guideline_files, self.paths.base)

        await self.events.phase(ProcessingTodos(current=0, total=total))

        for index, path in enumerate(todo_files, start=1):
            if self.cancel.is_set:
                return
            file_name = path.name

            await self.events.phase(ProcessingTodos(current=index, total=total))
            self.events.emit_nowait(CurrentFile(name=file_name))
            await self.events.phase(RunningExecution(model=name, file_index=index, attempt=1))
            await self.events.running(f"Processing: {file_name} with {name}")
            await self.events.emit(ClearOutput())

            try:
                content = await read_file_content(path)
            except (OSError, UnicodeDecodeError) as e:
                await self.events.error(f"Failed on {file_name}: {e}")
                log.warning("todo_read_failed", file=file_name, error=str(e))
                continue

            prompt = wrap_for_execution(content, completed_summary, guidelines)
            try:
                output = await run_with_retry(
                    prompt,
                    executor,
                    lambda attempt, i=index: RunningExecution(model=name, file_index=i, attempt=attempt),
                    self.retry_config,
                    self.events,
                    self.cancel,
                )
            except ShutdownSignaled:
                raise
            except ExecutorError as e:
                # The file stays pending and is offered to the planner again.
                log.error("task_failed", file=file_name, executor=name, error=str(e))
                await self.events.error(f"Failed on {file_name}: {e}")
                continue

            summary = None
            if self.summarize_completions:
                summary = await self._summarize(content, output)

            archived = await self._archive(path)
            line = reference_line(archived, self.paths.base)
            if summary:
                line = truncate_summary(f"{line}: {summary}", MAX_ENTRY_LENGTH)
            self.task_text = upsert_completed_task_summary(self.task_text, line)
            completed_summary = extract_completed_tasks_summary(self.task_text)

            await self._persist("Failed to persist task.md")
            await self.events.success(f"Completed: {file_name}")
            log.info("task_completed", file=file_name, archived=str(archived))

    # -- helpers ------------------------------------------------------------

    async def _archive(self, path: Path) -> Path:
        """Move a finished task into ``done/``; returns where it ended up."""
        await self.events.phase(MovingCompletedFiles())
        try:
            (archived,) = await move_to_done([path], self.paths.done_dir)
        except OSError as e:
            log.warning("archive_failed", file=path.name, error=str(e))
            await self.events.warning(f"Failed to archive todo file {path.name}: {e}")
            return path
        await self.events.info(f"Archived {path.name} -> {archived.name}")
        return archived

    async def _summarize(self, content: str, execution_output: str) -> str:
        """One-line summary of a finished task from the execution executor.

        Falls back to the task file's own title/objective when the executor
        fails or says nothing usable.
        """
        await self.events.running("Generating task summary...")
        try:
            raw = await run_with_retry(
                wrap_for_task_summary(content, execution_output),
                self.execution_executor,
                lambda attempt: MovingCompletedFiles(),
                RetryConfig(max_attempts=1),
                self.events,
                self.cancel,
            )
        except ShutdownSignaled:
            raise
        except ExecutorError as e:
            log.warning("task_summary_failed", error=str(e))
            raw = ""

        return (
            normalize_summary_entry(raw)
            or normalize_summary_entry(extract_task_summary(content, MAX_ENTRY_LENGTH))
            or "Completed task"
        )

    async def _persist(self, failure_message: str) -> None:
        try:
            await persist_task_text(self.paths.task_file, self.task_text)
        except OSError as e:
            # The in-memory ledger stays authoritative; the next success retries the write.
            log.warning("ledger_persist_failed", path=str(self.paths.task_file), error=str(e))
            await self.events.warning(f"{failure_message}: {e}")
        await self.events.emit(TaskTextUpdated(text=self.task_text))

    async def _stop_if_cancelled(self) -> bool:
        if not self.cancel.is_set:
            return False
        log.info("flow_cancelled")
        await self.events.done()
        return True


async def run_flow(
    planning_executor: BaseExecutor,
    execution_executor: BaseExecutor,
    paths: WorkspacePaths,
    events: EventSink,
    cancel: CancelFlag,
    input_path: Path | None = None,
    input_text: str = "",
    retry_config: RetryConfig | None = None,
    max_iterations: int | None = None,
    summarize_completions: bool = False,
) -> str:
    """Run one flow to completion and return the final ledger text."""
    runner = FlowRunner(
        planning_executor,
        execution_executor,
        paths,
        events,
        cancel,
        retry_config=retry_config,
        max_iterations=max_iterations,
        summarize_completions=summarize_completions,
    )
    await runner.run(input_path=input_path, input_text=input_text)
    return runner.task_text
