"""End-to-end tests for the plan/execute loop with fake executors."""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest
from conftest import FakeExecutor, exits_with, raises

from mcgravity.core.events import (
    ClearOutput,
    CurrentFile,
    Done,
    EventSink,
    Output,
    OutputCategory,
    PhaseChanged,
    TaskTextUpdated,
    TodoFilesUpdated,
    drain,
)
from mcgravity.core.flow import (
    CheckingDoneFiles,
    Completed,
    CycleComplete,
    Failed,
    NoTodoFiles,
    ProcessingTodos,
    ReadingInput,
    RunningExecution,
    RunningPlanning,
)
from mcgravity.core.ledger import extract_completed_tasks_summary
from mcgravity.core.runner import FlowRunner, run_flow
from mcgravity.executors.base import CliOutput, MaxAttemptsExceeded, ShutdownSignaled


@pytest.fixture
def events():
    return EventSink(asyncio.Queue())


def plans(paths, *batches):
    """Planner that writes the n-th batch of task files on its n-th call."""

    async def behavior(input_text, output, cancel, call):
        if call <= len(batches):
            for name in batches[call - 1]:
                (paths.todo_dir / name).write_text(f"# Task: {name}\n\n## Objective\n\nDo {name}.\n")
        await output.put(CliOutput.stdout(f"planned {call}"))
        return 0

    return behavior


def _phases(collected):
    return [e.phase for e in collected if isinstance(e, PhaseChanged)]


def _lines(collected, category=None):
    return [
        e.line.text
        for e in collected
        if isinstance(e, Output) and (category is None or e.line.category == category)
    ]


def _done_count(collected):
    return sum(isinstance(e, Done) for e in collected)


def _runner(paths, events, cancel, planner, executor, retry, **kwargs):
    return FlowRunner(planner, executor, paths, events, cancel, retry_config=retry, **kwargs)


class TestFlowEndings:
    async def test_nothing_to_do(self, paths, events, cancel, fast_retry):
        planner = FakeExecutor(plans(paths), name="Planner")
        executor = FakeExecutor(exits_with(0), name="Executor")

        runner = _runner(paths, events, cancel, planner, executor, fast_retry)
        await runner.run(input_text="Build a CLI")

        collected = drain(events.queue)
        phases = _phases(collected)
        assert isinstance(phases[0], ReadingInput)
        assert isinstance(phases[1], CheckingDoneFiles)
        assert isinstance(phases[-1], NoTodoFiles)
        assert _done_count(collected) == 1
        assert isinstance(collected[-1], Done)
        assert planner.calls == 1
        assert executor.calls == 0
        assert "+ No todo files found - all done!" in _lines(collected)
        assert runner.task_text == "Build a CLI"

    async def test_tasks_executed_and_archived(self, paths, events, cancel, fast_retry):
        planner = FakeExecutor(plans(paths, ["task-001.md", "task-002.md"]), name="Planner")
        executor = FakeExecutor(exits_with(0, "implemented"), name="Executor")

        runner = _runner(paths, events, cancel, planner, executor, fast_retry)
        await runner.run(input_text="Build a CLI")

        assert planner.calls == 2
        assert executor.calls == 2
        assert list(paths.todo_dir.glob("*.md")) == []
        assert sorted(p.name for p in paths.done_dir.iterdir()) == ["task-001.md", "task-002.md"]

        summary = extract_completed_tasks_summary(runner.task_text)
        assert ".mcgravity/todo/done/task-001.md" in summary
        assert ".mcgravity/todo/done/task-002.md" in summary
        assert paths.task_file.read_text(encoding="utf-8") == runner.task_text

        # The second planning pass sees what was finished and nothing pending.
        second_prompt = planner.inputs[1]
        assert "- .mcgravity/todo/done/task-001.md" in second_prompt
        assert "<PENDING_TASKS>\n\n</PENDING_TASKS>" in second_prompt
        assert "Do task-001.md." in executor.inputs[0]
        assert "- .mcgravity/todo/done/task-001.md" in executor.inputs[1]

        collected = drain(events.queue)
        assert _done_count(collected) == 1
        phases = _phases(collected)
        assert ProcessingTodos(current=2, total=2) in phases
        assert RunningExecution(model="Executor", file_index=2, attempt=1) in phases
        assert CycleComplete(iteration=1) in phases
        assert any(isinstance(e, TodoFilesUpdated) and len(e.files) == 2 for e in collected)
        assert [e.name for e in collected if isinstance(e, CurrentFile)] == ["task-001.md", "task-002.md", None]
        assert sum(isinstance(e, TaskTextUpdated) for e in collected) == 2
        assert "implemented" in _lines(collected, OutputCategory.STDOUT)
        assert "+ Completed: task-002.md" in _lines(collected)

    async def test_failed_task_stays_pending(self, paths, events, cancel, fast_retry):
        planner = FakeExecutor(plans(paths, ["task-001.md"]), name="Planner")
        executor = FakeExecutor(exits_with(1), name="Executor")

        runner = _runner(paths, events, cancel, planner, executor, fast_retry, max_iterations=1)
        await runner.run(input_text="Build a CLI")

        assert executor.calls == fast_retry.max_attempts
        assert (paths.todo_dir / "task-001.md").exists()
        assert extract_completed_tasks_summary(runner.task_text) == ""

        collected = drain(events.queue)
        errors = _lines(collected, OutputCategory.ERROR)
        assert errors == ["x Failed on task-001.md: Executor exited with code 1"]
        assert isinstance(_phases(collected)[-1], Completed)
        assert _done_count(collected) == 1

    async def test_failing_task_does_not_stop_the_next(self, paths, events, cancel, fast_retry):
        async def execute(input_text, output, cancel, call):
            return 1 if "Do task-001.md." in input_text else 0

        planner = FakeExecutor(plans(paths, ["task-001.md", "task-002.md"]), name="Planner")
        executor = FakeExecutor(execute, name="Executor")

        runner = _runner(paths, events, cancel, planner, executor, fast_retry, max_iterations=1)
        await runner.run(input_text="Build a CLI")

        assert executor.calls == fast_retry.max_attempts + 1
        assert "Do task-002.md." in executor.inputs[-1]
        assert (paths.todo_dir / "task-001.md").exists()
        assert not (paths.todo_dir / "task-002.md").exists()
        assert (paths.done_dir / "task-002.md").exists()
        assert extract_completed_tasks_summary(runner.task_text) == "- .mcgravity/todo/done/task-002.md"
        assert runner.task_text.count("task-002.md") == 1

        collected = drain(events.queue)
        assert "x Failed on task-001.md: Executor exited with code 1" in _lines(collected)
        assert "+ Completed: task-002.md" in _lines(collected)
        assert _done_count(collected) == 1

    async def test_undecodable_task_file_is_skipped(self, paths, events, cancel, fast_retry):
        async def plan(input_text, output, cancel, call):
            if call == 1:
                (paths.todo_dir / "task-001.md").write_bytes(b"\xff\xfe broken")
                (paths.todo_dir / "task-002.md").write_text("# Task 002\n")
            return 0

        planner = FakeExecutor(plan, name="Planner")
        executor = FakeExecutor(exits_with(0), name="Executor")

        runner = _runner(paths, events, cancel, planner, executor, fast_retry, max_iterations=1)
        await runner.run(input_text="Plan")

        assert executor.calls == 1
        assert (paths.todo_dir / "task-001.md").exists()
        assert (paths.done_dir / "task-002.md").exists()
        collected = drain(events.queue)
        errors = _lines(collected, OutputCategory.ERROR)
        assert len(errors) == 1
        assert errors[0].startswith("x Failed on task-001.md:")
        assert _done_count(collected) == 1

    async def test_guidelines_come_from_project_root(self, paths, events, cancel, fast_retry, tmp_path, monkeypatch):
        (paths.base / "AGENTS.md").write_text("rules")
        elsewhere = tmp_path / "elsewhere"
        elsewhere.mkdir()
        (elsewhere / "CLAUDE.md").write_text("other rules")
        monkeypatch.chdir(elsewhere)

        planner = FakeExecutor(plans(paths, ["task-001.md"]), name="Planner")
        executor = FakeExecutor(exits_with(0), name="Executor")

        await _runner(paths, events, cancel, planner, executor, fast_retry, max_iterations=1).run(input_text="Plan")

        for prompt in (planner.inputs[0], executor.inputs[0]):
            assert "- `AGENTS.md`" in prompt
            assert "CLAUDE.md`" not in prompt

    async def test_planning_failure(self, paths, events, cancel, fast_retry):
        planner = FakeExecutor(exits_with(2), name="Planner")
        executor = FakeExecutor(exits_with(0), name="Executor")

        runner = _runner(paths, events, cancel, planner, executor, fast_retry)
        with pytest.raises(MaxAttemptsExceeded):
            await runner.run(input_text="Build a CLI")

        assert planner.calls == 3
        assert executor.calls == 0
        collected = drain(events.queue)
        failed = [p for p in _phases(collected) if isinstance(p, Failed)]
        assert len(failed) == 1
        assert failed[0].reason == "Planner failed after max retries: Planner exited with code 2"
        assert "x Planner failed: Planner exited with code 2" in _lines(collected)
        assert _done_count(collected) == 1

    async def test_max_iterations(self, paths, events, cancel, fast_retry):
        planner = FakeExecutor(plans(paths, ["task-001.md"], ["task-002.md"], ["task-003.md"]), name="Planner")
        executor = FakeExecutor(exits_with(0), name="Executor")

        runner = _runner(paths, events, cancel, planner, executor, fast_retry, max_iterations=2)
        await runner.run(input_text="Build a CLI")

        assert planner.calls == 2
        assert executor.calls == 2
        collected = drain(events.queue)
        assert "  Reached maximum iterations (2). Stopping flow." in _lines(collected)
        assert isinstance(_phases(collected)[-1], Completed)
        assert _done_count(collected) == 1

    async def test_planning_retries_then_succeeds(self, paths, events, cancel, fast_retry):
        async def flaky(input_text, output, cancel, call):
            return 1 if call == 1 else 0

        planner = FakeExecutor(flaky, name="Planner")
        executor = FakeExecutor(exits_with(0), name="Executor")

        await _runner(paths, events, cancel, planner, executor, fast_retry).run(input_text="plan")

        collected = drain(events.queue)
        assert RunningPlanning(model="Planner", attempt=2) in _phases(collected)
        assert "! Planner exited with code 1, retrying in 0s..." in _lines(collected)
        assert _done_count(collected) == 1


class TestInput:
    async def test_reads_input_file(self, paths, events, cancel, fast_retry, tmp_path):
        plan = tmp_path / "plan.md"
        plan.write_text("Build ✓", encoding="utf-8")
        planner = FakeExecutor(plans(paths), name="Planner")

        runner = _runner(paths, events, cancel, planner, FakeExecutor(exits_with(0)), fast_retry)
        await runner.run(input_path=plan)

        assert runner.task_text == "Build ✓"
        assert "Build ✓" in planner.inputs[0]
        lines = _lines(drain(events.queue))
        assert "> Reading input file..." in lines
        assert "+ Read input file (9 bytes)" in lines

    async def test_entered_text(self, paths, events, cancel, fast_retry):
        runner = _runner(paths, events, cancel, FakeExecutor(plans(paths)), FakeExecutor(exits_with(0)), fast_retry)
        await runner.run(input_text="abc")

        assert "+ Using entered task text (3 bytes)" in _lines(drain(events.queue))

    async def test_missing_input_file(self, paths, events, cancel, fast_retry, tmp_path):
        planner = FakeExecutor(plans(paths))
        runner = _runner(paths, events, cancel, planner, FakeExecutor(exits_with(0)), fast_retry)

        with pytest.raises(OSError):
            await runner.run(input_path=tmp_path / "missing.md")

        collected = drain(events.queue)
        assert planner.calls == 0
        assert _done_count(collected) == 0
        assert _lines(collected, OutputCategory.ERROR)[0].startswith("x Failed to read input file:")


    async def test_undecodable_input_file(self, paths, events, cancel, fast_retry, tmp_path):
        plan = tmp_path / "plan.md"
        plan.write_bytes(b"\xff\xfe plan")
        planner = FakeExecutor(plans(paths))
        runner = _runner(paths, events, cancel, planner, FakeExecutor(exits_with(0)), fast_retry)

        with pytest.raises(UnicodeDecodeError):
            await runner.run(input_path=plan)

        collected = drain(events.queue)
        assert planner.calls == 0
        assert _done_count(collected) == 0
        assert _lines(collected, OutputCategory.ERROR)[0].startswith("x Failed to read input file:")


class TestLedger:
    async def test_migrates_legacy_done_files(self, paths, events, cancel, fast_retry):
        (paths.done_dir / "task-001.md").write_text("old")
        planner = FakeExecutor(plans(paths), name="Planner")

        runner = _runner(paths, events, cancel, planner, FakeExecutor(exits_with(0)), fast_retry)
        await runner.run(input_text="Plan")

        assert runner.task_text == "Plan\n\n<COMPLETED_TASKS>\n- .mcgravity/todo/done/task-001.md\n</COMPLETED_TASKS>\n"
        assert paths.task_file.read_text(encoding="utf-8") == runner.task_text
        assert "<COMPLETED_TASKS>\n- .mcgravity/todo/done/task-001.md\n</COMPLETED_TASKS>" in planner.inputs[0]
        assert "  Found 1 legacy done file(s) to migrate" in _lines(drain(events.queue))

    async def test_migration_is_idempotent(self, paths, events, cancel, fast_retry):
        (paths.done_dir / "task-001.md").write_text("old")
        ledger = "Plan\n\n<COMPLETED_TASKS>\n- .mcgravity/todo/done/task-001.md\n</COMPLETED_TASKS>\n"

        runner = _runner(paths, events, cancel, FakeExecutor(plans(paths)), FakeExecutor(exits_with(0)), fast_retry)
        await runner.run(input_text=ledger)

        assert runner.task_text == ledger
        assert not paths.task_file.exists()

    async def test_persist_failure_is_reported(self, paths, events, cancel, fast_retry):
        planner = FakeExecutor(plans(paths, ["task-001.md"]), name="Planner")
        runner = _runner(paths, events, cancel, planner, FakeExecutor(exits_with(0)), fast_retry)

        with patch("mcgravity.core.runner.persist_task_text", AsyncMock(side_effect=OSError("disk full"))):
            await runner.run(input_text="Plan")

        collected = drain(events.queue)
        assert "! Failed to persist task.md: disk full" in _lines(collected)
        updates = [e.text for e in collected if isinstance(e, TaskTextUpdated)]
        assert updates == [runner.task_text]
        assert "task-001.md" in extract_completed_tasks_summary(runner.task_text)

    async def test_summarized_completions(self, paths, events, cancel, fast_retry):
        async def execute(input_text, output, cancel, call):
            if call == 1:
                await output.put(CliOutput.stdout("changed foo.py"))
            else:
                assert "changed foo.py" in input_text
                await output.put(CliOutput.stdout("Added the   login\nflow"))
            return 0

        planner = FakeExecutor(plans(paths, ["task-001.md"]), name="Planner")
        executor = FakeExecutor(execute, name="Executor")

        runner = _runner(paths, events, cancel, planner, executor, fast_retry, summarize_completions=True)
        await runner.run(input_text="Plan")

        assert executor.calls == 2
        assert extract_completed_tasks_summary(runner.task_text) == (
            "- .mcgravity/todo/done/task-001.md: Added the login flow"
        )

    async def test_summary_falls_back_to_task_title(self, paths, events, cancel, fast_retry):
        async def execute(input_text, output, cancel, call):
            return 0 if call == 1 else 1

        planner = FakeExecutor(plans(paths, ["task-001.md"]), name="Planner")
        executor = FakeExecutor(execute, name="Executor")

        runner = _runner(paths, events, cancel, planner, executor, fast_retry, summarize_completions=True)
        await runner.run(input_text="Plan")

        assert extract_completed_tasks_summary(runner.task_text) == (
            "- .mcgravity/todo/done/task-001.md: Task: task-001.md Do task-001.md."
        )


class TestCancellation:
    async def test_cancel_during_execution(self, paths, events, cancel, fast_retry):
        async def stop(input_text, output, cancel, call):
            cancel.set()
            raise ShutdownSignaled("interrupted")

        planner = FakeExecutor(plans(paths, ["task-001.md", "task-002.md"]), name="Planner")
        executor = FakeExecutor(stop, name="Executor")

        runner = _runner(paths, events, cancel, planner, executor, fast_retry)
        await runner.run(input_text="Plan")

        assert executor.calls == 1
        assert planner.calls == 1
        assert (paths.todo_dir / "task-001.md").exists()
        collected = drain(events.queue)
        assert _done_count(collected) == 1
        assert not any(isinstance(p, Failed) for p in _phases(collected))

    async def test_cancel_after_failed_attempt(self, paths, events, cancel, fast_retry):
        async def fail_and_cancel(input_text, output, cancel, call):
            cancel.set()
            return 1

        planner = FakeExecutor(fail_and_cancel, name="Planner")

        runner = _runner(paths, events, cancel, planner, FakeExecutor(exits_with(0)), fast_retry)
        await runner.run(input_text="Plan")

        assert planner.calls == 1
        assert _done_count(drain(events.queue)) == 1

    async def test_cancelled_before_start(self, paths, events, cancel, fast_retry):
        cancel.set()
        planner = FakeExecutor(plans(paths))

        await _runner(paths, events, cancel, planner, FakeExecutor(exits_with(0)), fast_retry).run(input_text="Plan")

        collected = drain(events.queue)
        assert planner.calls == 0
        assert _done_count(collected) == 1

    async def test_executor_exception_is_retried(self, paths, events, cancel, fast_retry):
        planner = FakeExecutor(plans(paths, ["task-001.md"]), name="Planner")
        executor = FakeExecutor(raises(RuntimeError("boom")), name="Executor")

        runner = _runner(paths, events, cancel, planner, executor, fast_retry, max_iterations=1)
        await runner.run(input_text="Plan")

        collected = drain(events.queue)
        assert executor.calls == 3
        assert "x Failed on task-001.md: boom" in _lines(collected)
        assert sum(isinstance(e, ClearOutput) for e in collected) >= 2


async def test_run_flow_returns_ledger(paths, events, cancel, fast_retry):
    planner = FakeExecutor(plans(paths, ["task-001.md"]), name="Planner")

    ledger = await run_flow(
        planner,
        FakeExecutor(exits_with(0)),
        paths,
        events,
        cancel,
        input_text="Plan",
        retry_config=fast_retry,
    )

    assert ledger.startswith("Plan\n\n<COMPLETED_TASKS>\n")
    assert "- .mcgravity/todo/done/task-001.md" in ledger
