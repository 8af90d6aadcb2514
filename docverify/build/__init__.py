"""Toolchain invocation for harness projects."""

from .orchestrator import BuildOrchestrator, CompileResult, EntryResult, PreludeBuild, ProjectBuild
from .process import CommandResult, CommandRunner, ToolchainError, run_command
from .toolchain import Toolchain, parse_artifacts

__all__ = [
    "BuildOrchestrator",
    "CommandResult",
    "CommandRunner",
    "CompileResult",
    "EntryResult",
    "PreludeBuild",
    "ProjectBuild",
    "Toolchain",
    "ToolchainError",
    "parse_artifacts",
    "run_command",
]
