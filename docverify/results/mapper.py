"""Maps toolchain output back to fragments and reconciles expected outcomes."""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Tuple

from ..build import CompileResult, EntryResult, ProjectBuild
from ..harness import HarnessProject, ProjectKind
from ..logging import get_logger
from ..models import (
    Directive,
    FailedCompile,
    FailedRuntime,
    Fragment,
    MismatchedExpectation,
    Passed,
    Verdict,
)

_SHORT_DIAGNOSTIC = re.compile(
    r"^(?P<file>[^\s:][^:]*):(?P<line>\d+):(?P<column>\d+): "
    r"(?P<level>error|warning)(?:\[(?P<code>\w+)\])?: (?P<message>.*)$"
)
_BARE_DIAGNOSTIC = re.compile(r"^(?P<level>error)(?:\[(?P<code>\w+)\])?: (?P<message>.*)$")
_NOISE = ("aborting due to", "could not compile")
_TEST_STATUS = re.compile(r"^test (?P<name>\S+) \.\.\. (?P<status>ok|FAILED|ignored)\b")
_TEST_STARTED = re.compile(r"^test (?P<name>\S+) \.\.\.")
_FAILURE_HEADER = re.compile(r"^---- (?P<name>\S+) stdout ----$")
_SOURCE_LOCATION = re.compile(r"(?P<file>src[/\\][^:\s'\"]+\.rs):(?P<line>\d+):(?P<column>\d+)")
_OUTPUT_TAIL = 40


@dataclass(frozen=True)
class Diagnostic:
    level: str
    message: str
    file: Optional[str] = None
    line: Optional[int] = None
    column: Optional[int] = None
    code: Optional[str] = None


class EntryStatus(Enum):
    PASSED = "passed"
    PANICKED = "panicked"
    IGNORED = "ignored"


@dataclass(frozen=True)
class TestEntryOutcome:
    status: EntryStatus
    message: str = ""


def parse_diagnostics(output: str) -> List[Diagnostic]:
    """Parse rustc ``--error-format=short`` output."""
    diagnostics: List[Diagnostic] = []
    for raw in output.splitlines():
        line = raw.rstrip()
        located = _SHORT_DIAGNOSTIC.match(line)
        if located:
            diagnostics.append(
                Diagnostic(
                    level=located.group("level"),
                    message=located.group("message"),
                    file=located.group("file").replace("\\", "/"),
                    line=int(located.group("line")),
                    column=int(located.group("column")),
                    code=located.group("code"),
                )
            )
            continue
        bare = _BARE_DIAGNOSTIC.match(line)
        if bare and not any(noise in bare.group("message") for noise in _NOISE):
            diagnostics.append(
                Diagnostic(level="error", message=bare.group("message"), code=bare.group("code"))
            )
    return diagnostics


def parse_test_output(output: str) -> Dict[str, TestEntryOutcome]:
    """Recover per-entry status and failure messages from libtest output."""
    statuses: Dict[str, EntryStatus] = {}
    blocks: Dict[str, List[str]] = {}
    current: Optional[str] = None
    for raw in output.splitlines():
        line = raw.rstrip()
        status = _TEST_STATUS.match(line)
        if status:
            statuses[status.group("name")] = {
                "ok": EntryStatus.PASSED,
                "FAILED": EntryStatus.PANICKED,
                "ignored": EntryStatus.IGNORED,
            }[status.group("status")]
            continue
        header = _FAILURE_HEADER.match(line)
        if header:
            current = header.group("name")
            blocks[current] = []
            continue
        if current is not None:
            if line == "failures:" or line.startswith("test result:"):
                current = None
                continue
            blocks[current].append(line)
    return {
        name: TestEntryOutcome(status=status, message="\n".join(blocks.get(name, [])).strip())
        for name, status in statuses.items()
    }


def started_entries(output: str) -> List[str]:
    """Names of entries libtest announced, whether or not a status followed."""
    return [
        started.group("name")
        for started in map(_TEST_STARTED.match, output.splitlines())
        if started
    ]


def panic_message(block: str) -> str:
    """Extract the human-readable panic payload from a failure block."""
    lines = block.splitlines()
    for index, line in enumerate(lines):
        if "panicked at" not in line:
            continue
        quoted = re.search(r"panicked at '(?P<message>.*)', ", line)
        if quoted:
            return quoted.group("message")
        payload: List[str] = []
        for following in lines[index + 1 :]:
            if following.startswith("note:") or not following.strip():
                break
            payload.append(following)
        if payload:
            return "\n".join(payload)
        return line.strip()
    for line in lines:
        if line.strip():
            return line.strip()
    return "panicked"


def output_tail(output: str, limit: int = _OUTPUT_TAIL) -> str:
    lines = output.strip().splitlines()
    return "\n".join(lines[-limit:])


class ResultMapper:
    """Turns a project's raw build results into one verdict per fragment."""

    def __init__(self) -> None:
        self.logger = get_logger("results")

    def map_build(self, build: ProjectBuild) -> Dict[str, Verdict]:
        verdicts = self.compile_verdicts(build.project, build.compile)
        if build.project.kind is ProjectKind.SHARED and build.compile.compiled:
            for fragment in build.project.fragments:
                if fragment.directive.runs:
                    verdicts[fragment.id] = self.entry_verdict(
                        fragment, build.project, build.entries.get(fragment.id)
                    )
        return verdicts

    def compile_verdicts(
        self, project: HarnessProject, compiled: CompileResult
    ) -> Dict[str, Verdict]:
        """Verdicts decided by the compile step alone.

        Fragments of a successfully compiled shared project that still need to
        run are left out.
        """
        result = compiled.result
        verdicts: Dict[str, Verdict] = {}

        if result.timed_out:
            for fragment in project.fragments:
                verdicts[fragment.id] = FailedRuntime(reason="timeout", output=output_tail(result.output))
            return verdicts

        if compiled.prelude_failed:
            diagnostic = "dependency prelude failed to build:\n" + output_tail(result.output)
            for fragment in project.fragments:
                verdicts[fragment.id] = FailedCompile(diagnostic=diagnostic)
            return verdicts

        if project.kind is ProjectKind.ISOLATED:
            for fragment in project.fragments:
                if result.ok:
                    verdicts[fragment.id] = MismatchedExpectation(
                        expected=Directive.EXPECT_COMPILE_ERROR.expectation,
                        actual="successful compile",
                        output=output_tail(result.output),
                    )
                else:
                    verdicts[fragment.id] = Passed()
            return verdicts

        if result.ok:
            for fragment in project.fragments:
                if fragment.directive is Directive.BUILD_ONLY:
                    verdicts[fragment.id] = Passed()
            return verdicts

        return self._shared_compile_failure(project, result.output)

    def entry_verdict(
        self,
        fragment: Fragment,
        project: HarnessProject,
        entry: Optional[EntryResult],
    ) -> Verdict:
        if entry is None:
            return FailedRuntime(reason="entry was not executed")
        result = entry.result
        if result.timed_out:
            return FailedRuntime(reason="timeout", output=output_tail(result.output))

        outcome = parse_test_output(result.output).get(entry.entry)
        if outcome is None and result.code == 0 and entry.entry in started_entries(result.output):
            # The entry ended the process itself (std::process::exit(0)) before
            # libtest could print its status.
            outcome = TestEntryOutcome(status=EntryStatus.PASSED)
        if outcome is None:
            if result.code == 0:
                return FailedRuntime(
                    reason=f"entry {entry.entry} was not found in the test binary",
                    output=output_tail(result.output),
                )
            if result.code < 0:
                message = f"terminated by signal {-result.code}"
            else:
                message = f"aborted with exit code {result.code}"
            outcome = TestEntryOutcome(status=EntryStatus.PANICKED, message=message)
        elif outcome.status is EntryStatus.IGNORED:
            return FailedRuntime(reason="entry was ignored", output=output_tail(result.output))

        if outcome.status is EntryStatus.PANICKED:
            if fragment.directive is Directive.EXPECT_PANIC:
                return Passed()
            return FailedRuntime(
                reason=panic_message(outcome.message),
                line=self._panic_line(project, outcome.message),
                output=output_tail(result.output),
            )

        if fragment.directive is Directive.EXPECT_PANIC:
            return MismatchedExpectation(
                expected=Directive.EXPECT_PANIC.expectation,
                actual="normal exit",
                output=output_tail(result.output),
            )
        return Passed()

    # ------------------------------------------------------------------
    # Internal helpers

    def _shared_compile_failure(self, project: HarnessProject, output: str) -> Dict[str, Verdict]:
        """Every fragment of a failed shared compile fails; diagnostics go to their owners."""
        owned: Dict[str, List[Tuple[int, Diagnostic]]] = {}
        unattributed: List[Diagnostic] = []
        for diagnostic in parse_diagnostics(output):
            if diagnostic.level != "error":
                continue
            resolved = None
            if diagnostic.file is not None and diagnostic.line is not None:
                resolved = project.locations.resolve(diagnostic.file, diagnostic.line)
            if resolved is None:
                unattributed.append(diagnostic)
                continue
            fragment, doc_line = resolved
            owned.setdefault(fragment.id, []).append((doc_line, diagnostic))

        culprits = [fragment.name for fragment in project.fragments if fragment.id in owned]
        self.logger.debug(
            "Shared compile of %s failed; culprits: %s", project.name, ", ".join(culprits) or "unknown"
        )
        verdicts: Dict[str, Verdict] = {}
        for fragment in project.fragments:
            mine = owned.get(fragment.id)
            if mine:
                text = "\n".join(
                    f"{fragment.document}:{line}: {_label(diagnostic)}: {diagnostic.message}"
                    for line, diagnostic in mine
                )
                verdicts[fragment.id] = FailedCompile(diagnostic=text, line=mine[0][0])
            elif culprits:
                verdicts[fragment.id] = FailedCompile(
                    diagnostic=(
                        "shared compilation failed because of another fragment: "
                        + ", ".join(culprits)
                    )
                )
            else:
                detail = "\n".join(f"{_label(d)}: {d.message}" for d in unattributed)
                verdicts[fragment.id] = FailedCompile(
                    diagnostic=(
                        "shared compilation failed and no diagnostic could be attributed:\n"
                        + (detail or output_tail(output))
                    )
                )
        return verdicts

    @staticmethod
    def _panic_line(project: HarnessProject, message: str) -> Optional[int]:
        for match in _SOURCE_LOCATION.finditer(message):
            resolved = project.locations.resolve(match.group("file"), int(match.group("line")))
            if resolved is not None:
                return resolved[1]
        return None


def _label(diagnostic: Diagnostic) -> str:
    return f"{diagnostic.level}[{diagnostic.code}]" if diagnostic.code else diagnostic.level


__all__ = [
    "Diagnostic",
    "EntryStatus",
    "ResultMapper",
    "TestEntryOutcome",
    "output_tail",
    "panic_message",
    "parse_diagnostics",
    "parse_test_output",
    "started_entries",
]
