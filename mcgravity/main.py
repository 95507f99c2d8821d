"""McGravity entry point: runs the flow headless and prints its events."""

from __future__ import annotations

import asyncio
import signal
import sys
from pathlib import Path

import click

from mcgravity.config import Settings, load_settings
from mcgravity.core.cancel import CancelFlag
from mcgravity.core.events import (
    Done,
    EventSink,
    FlowEvent,
    Output,
    OutputCategory,
    PhaseChanged,
    TaskTextUpdated,
    TodoFilesUpdated,
    drain,
)
from mcgravity.core.flow import Failed
from mcgravity.core.runner import FlowRunner
from mcgravity.executors import Model, ModelAvailability, create_executor
from mcgravity.executors.base import CommandNotFoundError, ExecutorError
from mcgravity.utils.logging import get_logger, setup_logging
from mcgravity.utils.platform import normalize_path

log = get_logger(__name__)

_MODEL_CHOICES = click.Choice([m.value for m in Model], case_sensitive=False)

_STYLES = {
    OutputCategory.SUCCESS: {"fg": "green"},
    OutputCategory.WARNING: {"fg": "yellow"},
    OutputCategory.ERROR: {"fg": "red", "bold": True},
    OutputCategory.RUNNING: {"fg": "cyan"},
    OutputCategory.STDERR: {"dim": True},
}


class ConsoleObserver:
    """Prints flow events to the terminal until the flow reports ``Done``."""

    def __init__(self, queue: asyncio.Queue[FlowEvent], color: bool = True) -> None:
        self.queue = queue
        self.color = color
        self.failed = False

    async def run(self) -> None:
        while True:
            event = await self.queue.get()
            if self.handle(event):
                return

    def flush(self) -> None:
        for event in drain(self.queue):
            self.handle(event)

    def handle(self, event: FlowEvent) -> bool:
        """Render one event; returns True once the flow is done."""
        if isinstance(event, Output) and event.line is not None:
            line = event.line
            text = click.style(line.text, **_STYLES.get(line.category, {})) if self.color else line.text
            click.echo(text, err=line.category == OutputCategory.STDERR)
        elif isinstance(event, PhaseChanged) and event.phase is not None:
            if isinstance(event.phase, Failed):
                self.failed = True
            log.info("phase_changed", phase=event.phase.description())
        elif isinstance(event, TodoFilesUpdated):
            log.debug("todo_files_updated", count=len(event.files))
        elif isinstance(event, TaskTextUpdated):
            log.debug("ledger_updated", size=len(event.text))
        return isinstance(event, Done)


async def run(
    settings: Settings,
    input_path: Path | None,
    input_text: str,
) -> int:
    paths = settings.workspace_paths()
    paths.ensure_dirs()

    planning = create_executor(settings.flow.planning_model, cwd=paths.base)
    execution = create_executor(settings.flow.execution_model, cwd=paths.base)
    for executor in {planning.command: planning, execution.command: execution}.values():
        if not await asyncio.to_thread(executor.is_available):
            click.echo(click.style(f"x {CommandNotFoundError(executor.command)}", fg="red"), err=True)
            return 1

    queue: asyncio.Queue[FlowEvent] = asyncio.Queue(maxsize=settings.flow.event_queue_size)
    cancel = CancelFlag()
    runner = FlowRunner(
        planning,
        execution,
        paths,
        EventSink(queue),
        cancel,
        retry_config=settings.retry.to_retry_config(),
        max_iterations=settings.flow.max_iterations,
        summarize_completions=settings.flow.summarize_completions,
    )
    observer = ConsoleObserver(queue, color=sys.stdout.isatty())

    loop = asyncio.get_running_loop()
    if sys.platform != "win32":
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, cancel.set)

    log.info(
        "flow_starting",
        root=str(paths.base),
        planner=planning.name,
        executor=execution.name,
        max_iterations=settings.flow.max_iterations,
    )
    observer_task = asyncio.create_task(observer.run())
    try:
        await runner.run(input_path=input_path, input_text=input_text)
    except (OSError, UnicodeDecodeError) as e:
        log.error("flow_input_failed", error=str(e))
        return 1
    except ExecutorError as e:
        log.error("flow_failed", error=str(e))
        return 1
    finally:
        observer_task.cancel()
        await asyncio.gather(observer_task, return_exceptions=True)
        observer.flush()
        if sys.platform != "win32":
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.remove_signal_handler(sig)

    return 1 if observer.failed else 0


@click.group()
def cli() -> None:
    """McGravity: plan with one AI CLI, execute with another, repeat."""


@cli.command("run")
@click.argument("input_file", required=False, type=click.Path(dir_okay=False, path_type=Path))
@click.option("--text", "text", default=None, help="Plan text to use instead of INPUT_FILE")
@click.option("--planner", type=_MODEL_CHOICES, default=None, help="CLI used for planning")
@click.option("--executor", type=_MODEL_CHOICES, default=None, help="CLI used to execute tasks")
@click.option("--max-iterations", type=click.IntRange(min=1), default=None, help="Stop after N cycles")
@click.option("--root", type=click.Path(file_okay=False, path_type=Path), default=None, help="Project directory")
@click.option("--config", "config_path", default=None, help="Path to config YAML file")
@click.option("--log-level", default=None, help="Log level (DEBUG, INFO, WARNING, ERROR)")
def run_command(
    input_file: Path | None,
    text: str | None,
    planner: str | None,
    executor: str | None,
    max_iterations: int | None,
    root: Path | None,
    config_path: str | None,
    log_level: str | None,
) -> None:
    """Run the plan/execute flow on INPUT_FILE (or --text)."""
    if (input_file is None) == (text is None):
        raise click.UsageError("Give exactly one of INPUT_FILE or --text.")

    settings = load_settings(config_path)
    if log_level:
        settings.log_level = log_level
    if planner:
        settings.flow.planning_model = Model(planner.lower())
    if executor:
        settings.flow.execution_model = Model(executor.lower())
    if max_iterations is not None:
        settings.flow.max_iterations = max_iterations
    if root is not None:
        settings.root_dir = str(normalize_path(root))
    setup_logging(level=settings.log_level, json_output=settings.log_json)

    code = asyncio.run(run(settings, input_file, text or ""))
    sys.exit(code)


@cli.command("check")
def check_command() -> None:
    """Show which AI CLIs can be found."""
    setup_logging(level="WARNING")
    availability = ModelAvailability.check_all()
    for model in Model:
        ok = availability.is_available(model)
        mark = click.style("+", fg="green") if ok else click.style("x", fg="red")
        state = "available" if ok else "not found"
        click.echo(f"{mark} {model.display_name} ({model.command}): {state}")
    if not availability.any_available():
        sys.exit(1)


if __name__ == "__main__":
    cli()
