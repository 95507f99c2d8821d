"""Codex CLI executor."""

from __future__ import annotations

from mcgravity.core.cancel import CancelFlag
from mcgravity.executors.base import BaseExecutor, OutputQueue
from mcgravity.executors.process import run_process_with_output


class CodexExecutor(BaseExecutor):
    """``codex exec --dangerously-bypass-approvals-and-sandbox <input>``"""

    @property
    def name(self) -> str:
        return "Codex"

    @property
    def command(self) -> str:
        return "codex"

    def build_args(self, input_text: str) -> list[str]:
        return ["exec", "--dangerously-bypass-approvals-and-sandbox", input_text]

    async def execute(self, input_text: str, output: OutputQueue, cancel: CancelFlag) -> int:
        return await run_process_with_output(
            self.command, self.build_args(input_text), output, cancel, cwd=self.cwd
        )
