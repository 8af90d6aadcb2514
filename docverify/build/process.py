"""External process execution with timeouts and process-tree termination."""

from __future__ import annotations

import os
import signal
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional, Protocol, Sequence


class ToolchainError(RuntimeError):
    """Raised when a toolchain executable is missing or unusable."""


@dataclass(frozen=True)
class CommandResult:
    code: int
    output: str
    timed_out: bool = False
    duration_ms: int = 0

    @property
    def ok(self) -> bool:
        return self.code == 0 and not self.timed_out


class CommandRunner(Protocol):
    def __call__(
        self,
        args: Sequence[str],
        *,
        cwd: Path,
        env: Optional[Mapping[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> CommandResult: ...


def run_command(
    args: Sequence[str],
    *,
    cwd: Path,
    env: Optional[Mapping[str, str]] = None,
    timeout: Optional[float] = None,
) -> CommandResult:
    """Run ``args`` capturing combined stdout/stderr.

    On timeout the whole process group is killed and the partial output is
    returned with ``timed_out`` set.
    """
    started = time.monotonic()
    try:
        proc = subprocess.Popen(
            list(args),
            cwd=str(cwd),
            env=dict(env) if env is not None else None,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            errors="replace",
            start_new_session=os.name != "nt",
        )
    except FileNotFoundError as exc:
        raise ToolchainError(f"Unable to locate '{args[0]}'. Is it installed and on PATH?") from exc
    except PermissionError as exc:
        raise ToolchainError(f"Unable to execute '{args[0]}': {exc}") from exc

    timed_out = False
    try:
        output, _ = proc.communicate(timeout=timeout)
    except subprocess.TimeoutExpired:
        timed_out = True
        _kill_process_tree(proc)
        output, _ = proc.communicate()

    duration_ms = int((time.monotonic() - started) * 1000)
    return CommandResult(
        code=proc.returncode,
        output=output or "",
        timed_out=timed_out,
        duration_ms=duration_ms,
    )


def _kill_process_tree(proc: subprocess.Popen) -> None:
    if os.name == "nt":
        proc.kill()
        return
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except ProcessLookupError:
        pass


__all__ = ["CommandResult", "CommandRunner", "ToolchainError", "run_command"]
