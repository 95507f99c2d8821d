"""Flow events and the queue they travel on."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from uuid import uuid4

from mcgravity.core.flow import FlowPhase
from mcgravity.utils.logging import get_logger

log = get_logger(__name__)


# ---------------------------------------------------------------------------
# Output lines
# ---------------------------------------------------------------------------

class OutputCategory(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"
    RUNNING = "running"
    STDOUT = "stdout"
    STDERR = "stderr"


@dataclass(frozen=True)
class OutputLine:
    text: str
    category: OutputCategory

    @classmethod
    def info(cls, text: str) -> OutputLine:
        return cls(f"  {text}", OutputCategory.INFO)

    @classmethod
    def success(cls, text: str) -> OutputLine:
        return cls(f"+ {text}", OutputCategory.SUCCESS)

    @classmethod
    def warning(cls, text: str) -> OutputLine:
        return cls(f"! {text}", OutputCategory.WARNING)

    @classmethod
    def error(cls, text: str) -> OutputLine:
        return cls(f"x {text}", OutputCategory.ERROR)

    @classmethod
    def running(cls, text: str) -> OutputLine:
        return cls(f"> {text}", OutputCategory.RUNNING)

    @classmethod
    def stdout(cls, text: str) -> OutputLine:
        return cls(text, OutputCategory.STDOUT)

    @classmethod
    def stderr(cls, text: str) -> OutputLine:
        return cls(text, OutputCategory.STDERR)


# ---------------------------------------------------------------------------
# Event types
# ---------------------------------------------------------------------------

class EventType(str, Enum):
    PHASE_CHANGED = "phase.changed"
    OUTPUT = "output"
    TODO_FILES_UPDATED = "todo.files_updated"
    CURRENT_FILE = "todo.current_file"
    RETRY_WAIT = "retry.wait"
    CLEAR_OUTPUT = "output.clear"
    DONE = "flow.done"
    TASK_TEXT_UPDATED = "ledger.updated"


@dataclass
class FlowEvent:
    type: EventType
    id: str = field(default_factory=lambda: uuid4().hex[:12])
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class PhaseChanged(FlowEvent):
    type: EventType = field(default=EventType.PHASE_CHANGED, init=False)
    phase: FlowPhase | None = None


@dataclass
class Output(FlowEvent):
    type: EventType = field(default=EventType.OUTPUT, init=False)
    line: OutputLine | None = None


@dataclass
class TodoFilesUpdated(FlowEvent):
    type: EventType = field(default=EventType.TODO_FILES_UPDATED, init=False)
    files: list[Path] = field(default_factory=list)


@dataclass
class CurrentFile(FlowEvent):
    type: EventType = field(default=EventType.CURRENT_FILE, init=False)
    name: str | None = None


@dataclass
class RetryWait(FlowEvent):
    type: EventType = field(default=EventType.RETRY_WAIT, init=False)
    seconds: float | None = None


@dataclass
class ClearOutput(FlowEvent):
    type: EventType = field(default=EventType.CLEAR_OUTPUT, init=False)


@dataclass
class Done(FlowEvent):
    type: EventType = field(default=EventType.DONE, init=False)


@dataclass
class TaskTextUpdated(FlowEvent):
    type: EventType = field(default=EventType.TASK_TEXT_UPDATED, init=False)
    text: str = ""


# ---------------------------------------------------------------------------
# Sink
# ---------------------------------------------------------------------------

DEFAULT_QUEUE_SIZE = 1000


class EventSink:
    """Producer side of the flow's event queue.

    The queue is bounded and ordered. ``emit`` waits for room; ``emit_nowait``
    drops the event (with a warning) when the consumer has fallen behind.
    """

    def __init__(self, queue: asyncio.Queue[FlowEvent] | None = None) -> None:
        if queue is None:
            queue = asyncio.Queue(maxsize=DEFAULT_QUEUE_SIZE)
        self.queue: asyncio.Queue[FlowEvent] = queue

    async def emit(self, event: FlowEvent) -> None:
        await self.queue.put(event)

    def emit_nowait(self, event: FlowEvent) -> bool:
        try:
            self.queue.put_nowait(event)
        except asyncio.QueueFull:
            log.warning("event_queue_full", event_type=event.type.value)
            return False
        return True

    async def phase(self, phase: FlowPhase) -> None:
        await self.emit(PhaseChanged(phase=phase))

    async def output(self, line: OutputLine) -> None:
        await self.emit(Output(line=line))

    async def info(self, text: str) -> None:
        await self.output(OutputLine.info(text))

    async def success(self, text: str) -> None:
        await self.output(OutputLine.success(text))

    async def warning(self, text: str) -> None:
        await self.output(OutputLine.warning(text))

    async def error(self, text: str) -> None:
        await self.output(OutputLine.error(text))

    async def running(self, text: str) -> None:
        await self.output(OutputLine.running(text))

    async def done(self) -> None:
        await self.emit(Done())


def drain(queue: asyncio.Queue[FlowEvent]) -> list[FlowEvent]:
    """Take every event currently queued without waiting."""
    events: list[FlowEvent] = []
    while True:
        try:
            events.append(queue.get_nowait())
        except asyncio.QueueEmpty:
            return events
