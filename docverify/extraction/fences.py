"""Extraction of fenced code fragments from markdown documents."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import PurePath
from typing import List, Optional

from ..logging import get_logger
from ..models import Document, Fragment, SourceLine
from .directives import parse_fence_info

_FENCE_OPEN = re.compile(r"^(?P<indent> {0,3})(?P<fence>`{3,}|~{3,})(?P<info>.*)$")
_LINE_BREAK = re.compile(r"(?<=\n)")
_HEADING = re.compile(r"^ {0,3}(?P<level>#{1,6})(?:\s+(?P<title>.*?))?\s*#*\s*$")


@dataclass
class _OpenFence:
    char: str
    length: int
    indent: int
    info: str
    line: int
    offset: int
    section: Optional[str]
    body: List[tuple[int, str]] = field(default_factory=list)


class FragmentExtractor:
    """Scans markdown text for fenced regions tagged with the target language."""

    def __init__(self, language: str = "rust", hide_marker: str = "#") -> None:
        self.language = language
        self.hide_marker = hide_marker
        self.logger = get_logger("extraction")

    def extract(self, document: Document) -> List[Fragment]:
        fragments: List[Fragment] = []
        stem = sanitize_name(PurePath(document.path).stem) or "doc"
        section: Optional[str] = None
        fence: Optional[_OpenFence] = None
        offset = 0
        # Lines end at "\n" only, as editors and byte offsets count them.
        raw_lines = [raw for raw in _LINE_BREAK.split(document.text) if raw]

        for number, raw in enumerate(raw_lines, start=1):
            line = raw.rstrip("\r\n")
            line_start = offset
            offset += len(raw.encode("utf-8"))

            if fence is None:
                opened = _FENCE_OPEN.match(line)
                if opened and not (opened.group("fence")[0] == "`" and "`" in opened.group("info")):
                    fence = _OpenFence(
                        char=opened.group("fence")[0],
                        length=len(opened.group("fence")),
                        indent=len(opened.group("indent")),
                        info=opened.group("info").strip(),
                        line=number,
                        offset=line_start,
                        section=section,
                    )
                    continue
                heading = _HEADING.match(line)
                if heading and len(heading.group("level")) < 3:
                    section = sanitize_name(heading.group("title") or "") or None
                continue

            if self._closes(fence, line):
                self._emit(document, stem, fence, number, offset, fragments)
                fence = None
                continue
            fence.body.append((number, _strip_indent(line, fence.indent)))

        if fence is not None:
            # Unterminated fences run to the end of the document.
            last_line = max(fence.line, len(raw_lines))
            self._emit(document, stem, fence, last_line, offset, fragments)

        return fragments

    # ------------------------------------------------------------------
    # Internal helpers

    @staticmethod
    def _closes(fence: _OpenFence, line: str) -> bool:
        stripped = line.strip()
        if len(line) - len(line.lstrip(" ")) > 3 or not stripped:
            return False
        return (
            set(stripped) == {fence.char}
            and len(stripped) >= fence.length
        )

    def _emit(
        self,
        document: Document,
        stem: str,
        fence: _OpenFence,
        end_line: int,
        end_offset: int,
        fragments: List[Fragment],
    ) -> None:
        info = parse_fence_info(fence.info, self.language)
        if not info.is_target:
            return
        ordinal = len(fragments)
        if fence.section:
            name = f"{stem}_sect_{fence.section}_line_{fence.line}"
        else:
            name = f"{stem}_line_{fence.line}"
        for warning in info.warnings:
            self.logger.warning(
                "%s:%d: %s; fragment will be skipped", document.path, fence.line, warning
            )
        fragments.append(
            Fragment(
                id=f"{document.path}#{ordinal}",
                document=document.path,
                ordinal=ordinal,
                name=name,
                start_line=fence.line,
                end_line=end_line,
                start_offset=fence.offset,
                end_offset=end_offset,
                lines=tuple(
                    self._source_line(number, text) for number, text in fence.body
                ),
                directive=info.directive,
                dependencies=info.dependencies,
                edition=info.edition,
                warnings=tuple(info.warnings),
            )
        )

    def _source_line(self, number: int, text: str) -> SourceLine:
        cleaned, hidden = split_hidden_line(text, self.hide_marker)
        return SourceLine(number=number, text=cleaned, hidden=hidden)


def split_hidden_line(line: str, marker: str = "#") -> tuple[str, bool]:
    """Strip a leading hide marker, returning the code text and whether it was hidden.

    ``# code`` and a lone ``#`` are hidden; a doubled marker (``##``) escapes
    to a visible line starting with a single marker.
    """
    stripped = line.lstrip()
    if stripped.startswith(marker * 2):
        return line[: len(line) - len(stripped)] + stripped[len(marker):], False
    if stripped == marker:
        return "", True
    if stripped.startswith(f"{marker} "):
        return stripped[len(marker) + 1 :], True
    return line, False


def sanitize_name(value: str) -> str:
    """Lowercase ``value`` and collapse anything non-alphanumeric into underscores."""
    cleaned = "".join(
        ch if ch.isascii() and ch.isalnum() else "_" for ch in value.lower()
    )
    return "_".join(part for part in cleaned.split("_") if part)


def _strip_indent(line: str, indent: int) -> str:
    removable = len(line) - len(line.lstrip(" "))
    return line[min(indent, removable):]


def extract_fragments(
    document: Document, *, language: str = "rust", hide_marker: str = "#"
) -> List[Fragment]:
    """Extract the ordered fragments of ``document``."""
    return FragmentExtractor(language=language, hide_marker=hide_marker).extract(document)


__all__ = ["FragmentExtractor", "extract_fragments", "sanitize_name", "split_hidden_line"]
