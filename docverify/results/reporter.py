"""Aggregation and rendering of fragment verdicts."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List

from ..models import (
    FailedCompile,
    FailedRuntime,
    FragmentResult,
    MismatchedExpectation,
    Skipped,
)

_DETAIL_LINES = 20


@dataclass
class Report:
    """Verdicts of a run, in document order."""

    results: List[FragmentResult]

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def passed(self) -> int:
        return sum(
            1
            for result in self.results
            if result.verdict.ok and not isinstance(result.verdict, Skipped)
        )

    @property
    def skipped(self) -> int:
        return sum(1 for result in self.results if isinstance(result.verdict, Skipped))

    @property
    def cached(self) -> int:
        return sum(
            1
            for result in self.results
            if isinstance(result.verdict, Skipped) and result.verdict.cached
        )

    @property
    def failures(self) -> List[FragmentResult]:
        return [result for result in self.results if not result.verdict.ok]

    @property
    def exit_code(self) -> int:
        return 1 if self.failures else 0

    def by_document(self) -> Dict[str, List[FragmentResult]]:
        grouped: Dict[str, List[FragmentResult]] = {}
        for result in self.results:
            grouped.setdefault(result.fragment.document, []).append(result)
        return grouped

    def summary(self) -> str:
        return (
            f"{self.total} fragment(s): {self.passed} passed, {len(self.failures)} failed, "
            f"{self.skipped} skipped ({self.cached} cached)"
        )

    def render(self, *, verbose: bool = False) -> str:
        lines: List[str] = []
        for document, results in self.by_document().items():
            lines.append(document)
            for result in results:
                if not verbose and result.verdict.ok:
                    continue
                status = "ok" if result.verdict.ok else "FAILED"
                lines.append(
                    f"  {status:<7}{result.fragment.name} "
                    f"(line {result.fragment.start_line}): {result.verdict.describe()}"
                )
            if not verbose and all(result.verdict.ok for result in results):
                lines.append(f"  ok     {len(results)} fragment(s)")

        failures = self.failures
        if failures:
            lines.append("")
            lines.append("failures:")
            for result in failures:
                lines.append("")
                lines.append(f"---- {result.fragment.name} ({result.fragment.span}) ----")
                lines.extend(failure_detail(result))

        lines.append("")
        lines.append(f"result: {'FAILED' if failures else 'ok'}. {self.summary()}")
        return "\n".join(lines)


def failure_detail(result: FragmentResult) -> List[str]:
    """Human-readable explanation of a failing verdict."""
    verdict = result.verdict
    expectation = result.fragment.directive.expectation
    if isinstance(verdict, FailedCompile):
        lines = [f"expected {expectation}, got failed to compile"]
        lines.extend(_clip(verdict.diagnostic))
        return lines
    if isinstance(verdict, FailedRuntime):
        where = f" at line {verdict.line}" if verdict.line is not None else ""
        lines = [f"expected {expectation}, got failure{where}: {verdict.reason}"]
        lines.extend(_clip(verdict.output))
        return lines
    if isinstance(verdict, MismatchedExpectation):
        lines = [verdict.describe()]
        lines.extend(_clip(verdict.output))
        return lines
    return [verdict.describe()]


def _clip(text: str) -> List[str]:
    lines = [line for line in text.rstrip().splitlines()]
    if len(lines) > _DETAIL_LINES:
        lines = ["..."] + lines[-_DETAIL_LINES:]
    return [f"    {line}" for line in lines]


__all__ = ["Report", "failure_detail"]
