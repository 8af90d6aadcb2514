"""Command construction and output helpers for the rustc/cargo toolchain."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence

from ..harness import HarnessProject
from .process import CommandResult, CommandRunner, ToolchainError, run_command

_LIBRARY_KINDS = {"lib", "rlib", "dylib", "proc-macro"}
_DYNAMIC_SUFFIXES = (".so", ".dylib", ".dll")


class Toolchain:
    """Builds and runs rustc/cargo invocations through an injectable runner."""

    def __init__(
        self,
        rustc: str = "rustc",
        cargo: str = "cargo",
        *,
        runner: CommandRunner | None = None,
    ) -> None:
        self.rustc = rustc
        self.cargo = cargo
        self._runner: CommandRunner = runner or run_command
        self._identity: Optional[str] = None

    def run(
        self,
        args: Sequence[str],
        *,
        cwd: Path,
        env: Optional[Mapping[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> CommandResult:
        return self._runner(args, cwd=cwd, env=env, timeout=timeout)

    def identity(self, cwd: Path) -> str:
        """Return the verbose compiler version, used as part of every fingerprint."""
        if self._identity is None:
            result = self.run([self.rustc, "-vV"], cwd=cwd, timeout=60)
            if not result.ok or not result.output.strip():
                raise ToolchainError(
                    f"'{self.rustc} -vV' failed (exit code {result.code}): {result.output.strip()}"
                )
            self._identity = result.output.strip()
        return self._identity

    def require_cargo(self, cwd: Path) -> str:
        result = self.run([self.cargo, "-V"], cwd=cwd, timeout=60)
        if not result.ok:
            raise ToolchainError(
                f"'{self.cargo} -V' failed (exit code {result.code}): {result.output.strip()}"
            )
        return result.output.strip()

    def prelude_command(self) -> List[str]:
        return [
            self.cargo,
            "build",
            "--message-format=json-render-diagnostics",
            "--color",
            "never",
        ]

    @staticmethod
    def prelude_env(target_dir: Path) -> Dict[str, str]:
        env = dict(os.environ)
        env["CARGO_TARGET_DIR"] = str(target_dir)
        env["CARGO_TERM_COLOR"] = "never"
        return env

    def compile_command(
        self,
        project: HarnessProject,
        *,
        output: Path,
        externs: Mapping[str, str] | None = None,
        extra_externs: Sequence[str] = (),
        search_paths: Sequence[Path] = (),
    ) -> List[str]:
        """Compile the harness crate as a test binary.

        Isolated projects are compiled in full too: errors raised during
        monomorphization (const evaluation in generic items) only surface there.
        """
        args = [
            self.rustc,
            "src/lib.rs",
            "--test",
            f"--edition={project.edition}",
            "--crate-name",
            project.name,
            "--color=never",
            "--error-format=short",
        ]
        for path in search_paths:
            args.extend(["-L", f"dependency={path}"])
        for name, path in sorted((externs or {}).items()):
            args.extend(["--extern", f"{name}={path}"])
        for name in extra_externs:
            args.extend(["--extern", name])
        args.extend(["-o", str(output)])
        return args

    @staticmethod
    def output_path(project: HarnessProject) -> Path:
        suffix = ".exe" if os.name == "nt" else ""
        return project.root / f"{project.name}{suffix}"

    @staticmethod
    def entry_command(executable: Path, entry: str) -> List[str]:
        return [str(executable), "--exact", entry, "--test-threads", "1", "--color", "never"]

    @staticmethod
    def entry_env() -> Dict[str, str]:
        env = dict(os.environ)
        env["RUST_BACKTRACE"] = "0"
        return env


def parse_artifacts(output: str, crate_names: Mapping[str, str]) -> Dict[str, str]:
    """Collect ``--extern`` paths for direct dependencies from cargo JSON messages.

    ``crate_names`` maps library target names to the names code uses for them.
    """
    externs: Dict[str, str] = {}
    for line in output.splitlines():
        line = line.strip()
        if not line.startswith("{"):
            continue
        try:
            message = json.loads(line)
        except json.JSONDecodeError:
            continue
        if not isinstance(message, dict) or message.get("reason") != "compiler-artifact":
            continue
        target = message.get("target") or {}
        name = target.get("name")
        kinds = set(target.get("kind") or [])
        if name not in crate_names or not kinds & _LIBRARY_KINDS:
            continue
        path = _pick_library(message.get("filenames") or [], "proc-macro" in kinds)
        if path is not None:
            externs[crate_names[name]] = path
    return externs


def _pick_library(filenames: Sequence[str], proc_macro: bool) -> Optional[str]:
    if proc_macro:
        preferred = [name for name in filenames if name.endswith(_DYNAMIC_SUFFIXES)]
    else:
        preferred = [name for name in filenames if name.endswith(".rlib")]
    if preferred:
        return preferred[0]
    return filenames[0] if filenames else None


__all__ = ["Toolchain", "ToolchainError", "parse_artifacts"]
