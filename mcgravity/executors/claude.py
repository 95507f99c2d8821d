"""Claude Code CLI executor.

Claude is run in ``stream-json`` mode so output arrives while it works; each
JSON record is reduced to its displayable text by
``process.forward_claude_line`` before it reaches the queue.
"""

from __future__ import annotations

from mcgravity.core.cancel import CancelFlag
from mcgravity.executors.base import BaseExecutor, OutputQueue
from mcgravity.executors.process import forward_claude_line, run_process_with_output


class ClaudeExecutor(BaseExecutor):
    @property
    def name(self) -> str:
        return "Claude Code"

    @property
    def command(self) -> str:
        return "claude"

    def build_args(self, input_text: str) -> list[str]:
        # --verbose is required by the CLI when stream-json is used with -p.
        return [
            "-p", input_text,
            "--dangerously-skip-permissions",
            "--output-format", "stream-json",
            "--verbose",
        ]

    async def execute(self, input_text: str, output: OutputQueue, cancel: CancelFlag) -> int:
        return await run_process_with_output(
            self.command,
            self.build_args(input_text),
            output,
            cancel,
            stdout_handler=forward_claude_line,
            cwd=self.cwd,
        )
