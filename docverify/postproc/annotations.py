"""Failure annotations injected into returned documents."""

from __future__ import annotations

import re
from typing import Dict, List, Sequence, Tuple

from ..models import Document, FailedCompile, FailedRuntime, FragmentResult
from ..results import Report


class AnnotationManager:
    """Places one HTML comment after each failing fence."""

    MARKER_FMT = "<!-- docverify:failed:{key} {message} -->"
    _MARKER = re.compile(r"<!-- docverify:failed:(?P<key>\S+) .*? -->\n?")

    def render(self, result: FragmentResult) -> str:
        return self.MARKER_FMT.format(
            key=result.fragment.name, message=_comment_safe(describe_failure(result))
        )

    def annotate(self, document: Document, failures: Sequence[FragmentResult]) -> Document:
        """Return ``document`` with markers after the fences of ``failures``."""
        if not failures:
            return document
        data = document.text.encode("utf-8")
        inserts: List[Tuple[int, bytes]] = []
        for result in failures:
            offset = result.fragment.end_offset
            marker = self.render(result)
            following = data[offset:].decode("utf-8", errors="replace")
            existing = self._MARKER.match(following)
            if existing and existing.group("key") == result.fragment.name:
                # Already annotated by an earlier pass over the same text.
                continue
            prefix = "" if offset == 0 or data[offset - 1 : offset] == b"\n" else "\n"
            inserts.append((offset, f"{prefix}{marker}\n".encode("utf-8")))
        for offset, payload in sorted(inserts, key=lambda item: item[0], reverse=True):
            data = data[:offset] + payload + data[offset:]
        return Document(path=document.path, text=data.decode("utf-8"))


def annotate_documents(documents: Sequence[Document], report: Report) -> List[Document]:
    """Documents with failure markers; documents without failures are unchanged."""
    failures: Dict[str, List[FragmentResult]] = {}
    for result in report.failures:
        failures.setdefault(result.fragment.document, []).append(result)
    manager = AnnotationManager()
    return [manager.annotate(document, failures.get(document.path, [])) for document in documents]


def describe_failure(result: FragmentResult) -> str:
    verdict = result.verdict
    if isinstance(verdict, FailedCompile):
        first = verdict.diagnostic.strip().splitlines()
        detail = f": {first[0]}" if first else ""
        return f"{verdict.describe()}{detail}"
    if isinstance(verdict, FailedRuntime) and verdict.line is not None:
        return f"{verdict.describe()} at line {verdict.line}"
    return verdict.describe()


def _comment_safe(text: str) -> str:
    flattened = " ".join(text.split())
    while "--" in flattened:
        flattened = flattened.replace("--", "- -")
    return flattened


__all__ = ["AnnotationManager", "annotate_documents", "describe_failure"]
