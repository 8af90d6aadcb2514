"""Drives toolchain invocations for harness projects on a bounded worker pool."""

from __future__ import annotations

import threading
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from ..harness import DependencyManifest, HarnessProject, HarnessSynthesizer, ProjectKind
from ..logging import get_logger
from ..models import Fragment
from .process import CommandResult
from .toolchain import Toolchain, parse_artifacts


@dataclass
class PreludeBuild:
    """Outcome of warming the shared artifact cache for one dependency set."""

    result: CommandResult
    externs: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.result.ok


@dataclass
class CompileResult:
    project: HarnessProject
    result: CommandResult
    executable: Optional[Path] = None
    prelude_failed: bool = False

    @property
    def compiled(self) -> bool:
        return not self.prelude_failed and self.result.ok


@dataclass
class EntryResult:
    fragment: Fragment
    entry: str
    result: CommandResult


@dataclass
class ProjectBuild:
    """Everything the toolchain reported for one harness project."""

    project: HarnessProject
    compile: CompileResult
    entries: Dict[str, EntryResult] = field(default_factory=dict)


class BuildOrchestrator:
    """Runs one compile per project and one execution per runnable shared entry.

    Only dependency preludes mutate the shared artifact directory; they are
    built under ``artifact_lock`` and memoised, so later compilations read
    the warm prelude without locking.
    """

    def __init__(
        self,
        toolchain: Toolchain,
        synthesizer: HarnessSynthesizer,
        *,
        target_dir: Path,
        prelude_dir: Path,
        timeout: float,
        prelude_timeout: float,
        jobs: int = 1,
        externs: Sequence[str] = (),
    ) -> None:
        self.toolchain = toolchain
        self.synthesizer = synthesizer
        self.target_dir = target_dir
        self.prelude_dir = prelude_dir
        self.timeout = timeout
        self.prelude_timeout = prelude_timeout
        self.jobs = max(1, jobs)
        self.externs = list(externs)
        self.artifact_lock = threading.Lock()
        self._preludes: Dict[str, PreludeBuild] = {}
        self.logger = get_logger("build")

    def build_all(self, projects: Sequence[HarnessProject]) -> List[ProjectBuild]:
        builds: Dict[str, ProjectBuild] = {}
        with ThreadPoolExecutor(max_workers=self.jobs, thread_name_prefix="docverify") as pool:
            compiles: Dict[Future[CompileResult], HarnessProject] = {
                pool.submit(self.compile, project): project for project in projects
            }
            runs: Dict[Future[EntryResult], str] = {}
            for future in as_completed(compiles):
                project = compiles[future]
                compiled = future.result()
                builds[project.name] = ProjectBuild(project=project, compile=compiled)
                if project.kind is ProjectKind.SHARED and compiled.compiled:
                    for fragment in project.fragments:
                        if fragment.directive.runs:
                            runs[pool.submit(self.run_entry, compiled, fragment)] = project.name
            for run in as_completed(runs):
                entry = run.result()
                builds[runs[run]].entries[entry.fragment.id] = entry
        return [builds[project.name] for project in projects]

    def prelude(self, manifest: DependencyManifest) -> Optional[PreludeBuild]:
        """Build (once per run) the dependency prelude for ``manifest``."""
        if manifest.empty:
            return None
        key = manifest.fingerprint
        cached = self._preludes.get(key)
        if cached is not None:
            return cached
        with self.artifact_lock:
            cached = self._preludes.get(key)
            if cached is not None:
                return cached
            root = self.synthesizer.write_prelude(manifest, self.prelude_dir / key[:16])
            self.logger.info(
                "Building dependency prelude (%d dependencies) into %s",
                len(manifest.dependencies),
                self.target_dir,
            )
            result = self.toolchain.run(
                self.toolchain.prelude_command(),
                cwd=root,
                env=self.toolchain.prelude_env(self.target_dir),
                timeout=self.prelude_timeout,
            )
            externs = parse_artifacts(result.output, manifest.crate_names()) if result.ok else {}
            if not result.ok:
                self.logger.warning(
                    "Dependency prelude failed%s; dependent fragments will fail to compile",
                    " (timeout)" if result.timed_out else "",
                )
            build = PreludeBuild(result=result, externs=externs)
            self._preludes[key] = build
            return build

    def compile(self, project: HarnessProject) -> CompileResult:
        prelude = self.prelude(project.manifest)
        if prelude is not None and not prelude.ok:
            return CompileResult(project=project, result=prelude.result, prelude_failed=True)

        output = self.toolchain.output_path(project)
        args = self.toolchain.compile_command(
            project,
            output=output,
            externs=prelude.externs if prelude else None,
            extra_externs=self.externs,
            search_paths=self._search_paths(),
        )
        self.logger.debug("Compiling %s: %s", project.name, " ".join(args))
        result = self.toolchain.run(args, cwd=project.root, timeout=self.timeout)
        executable = output if result.ok and project.kind is ProjectKind.SHARED else None
        return CompileResult(project=project, result=result, executable=executable)

    def run_entry(self, compiled: CompileResult, fragment: Fragment) -> EntryResult:
        if compiled.executable is None:
            raise ValueError(f"{compiled.project.name} has no test binary to run")
        entry = compiled.project.entry_name(fragment)
        result = self.toolchain.run(
            self.toolchain.entry_command(compiled.executable, entry),
            cwd=compiled.project.root,
            env=self.toolchain.entry_env(),
            timeout=self.timeout,
        )
        if result.timed_out:
            self.logger.warning("%s timed out after %.0fs", fragment.name, self.timeout)
        return EntryResult(fragment=fragment, entry=entry, result=result)

    def _search_paths(self) -> List[Path]:
        return [self.target_dir / "debug" / "deps"]
