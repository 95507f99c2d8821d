"""Locate AI CLI tools, including ones only defined in shell profiles.

Resolution order:

1. the name is validated (``^[A-Za-z0-9_-]{1,64}$``) before any lookup
2. a direct PATH lookup that also checks the execute bit
3. on Unix, ``$SHELL -l -i -c "command -v <name>"`` so aliases, functions and
   PATH edits made in ``.zshrc``/``.bashrc`` are found too

The result decides how a process is launched, see ``executors.process``.
"""

from __future__ import annotations

import re
import shutil
import stat
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Literal

from mcgravity.utils.logging import get_logger
from mcgravity.utils.platform import get_platform, get_user_shell, is_unix

log = get_logger(__name__)

_SAFE_NAME_RE = re.compile(r"^[A-Za-z0-9_-]{1,64}$")

# An interactive login shell can be slow to source its profile but should
# never take this long just to answer `command -v`.
_SHELL_LOOKUP_TIMEOUT = 10

_WINDOWS_EXECUTABLE_SUFFIXES = {".exe", ".cmd", ".bat", ".com", ".ps1"}

ResolutionKind = Literal["path", "alias", "function", "builtin", "not_found"]


@dataclass(frozen=True)
class CommandResolution:
    kind: ResolutionKind
    # Resolved path for "path"; the shell's answer for "alias"/"function".
    detail: str = ""

    @property
    def is_available(self) -> bool:
        return self.kind != "not_found"

    @property
    def requires_shell(self) -> bool:
        return self.kind in ("alias", "function", "builtin")

    @property
    def path(self) -> Path | None:
        return Path(self.detail) if self.kind == "path" else None

    @classmethod
    def not_found(cls) -> CommandResolution:
        return cls("not_found")


def is_safe_command_name(command: str) -> bool:
    """True if ``command`` can be interpolated into a shell command line."""
    return bool(_SAFE_NAME_RE.match(command))


def is_executable(path: Path) -> bool:
    try:
        st = path.stat()
    except OSError:
        return False
    if not stat.S_ISREG(st.st_mode):
        return False
    if get_platform() == "windows":
        return path.suffix.lower() in _WINDOWS_EXECUTABLE_SUFFIXES
    return bool(st.st_mode & (stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH))


def resolve_command(command: str) -> CommandResolution:
    if not is_safe_command_name(command):
        log.warning("unsafe_command_name", command=command)
        return CommandResolution.not_found()

    resolution = _path_lookup(command)
    if resolution is None and is_unix():
        resolution = _shell_lookup(command)
    if resolution is None:
        resolution = CommandResolution.not_found()

    log.debug("command_resolved", command=command, kind=resolution.kind, detail=resolution.detail)
    return resolution


def _path_lookup(command: str) -> CommandResolution | None:
    found = shutil.which(command)
    if not found:
        return None
    path = Path(found)
    if not is_executable(path):
        return None
    return CommandResolution("path", str(path))


def _shell_lookup(command: str) -> CommandResolution | None:
    shell = get_user_shell()
    try:
        proc = subprocess.run(
            [shell, "-l", "-i", "-c", f"command -v {command}"],
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.DEVNULL,
            text=True,
            timeout=_SHELL_LOOKUP_TIMEOUT,
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        log.debug("shell_lookup_failed", command=command, shell=shell, error=str(e))
        return None

    if proc.returncode != 0:
        return None
    answer = proc.stdout.strip()
    if not answer:
        return None
    # Interactive shells may print banners first; `command -v` answers last.
    return classify_command_v_output(answer.splitlines()[-1].strip(), command)


def classify_command_v_output(output: str, command: str) -> CommandResolution:
    """Classify what ``command -v <command>`` printed."""
    if output.startswith("alias "):
        return CommandResolution("alias", output)

    if " is a function" in output or "() {" in output or output.startswith(f"{command} ()"):
        return CommandResolution("function", output)

    if output in (command, "builtin"):
        return CommandResolution("builtin", output)

    if "/" in output:
        path = Path(output)
        if is_executable(path):
            return CommandResolution("path", str(path))

    # Known to the shell but of an unknown kind; launch it through the shell.
    return CommandResolution("alias", output)


def check_cli_available(command: str) -> bool:
    return resolve_command(command).is_available
