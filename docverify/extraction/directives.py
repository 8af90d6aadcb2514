"""Parsing of fence info strings into directives and modifiers."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from ..config import EDITIONS
from ..models import Directive

_TOKEN_SPLIT = re.compile(r"[,\s]+")
_EDITION_TOKEN = re.compile(r"^edition(?P<edition>\d{4})$")
_DEP_TOKEN = re.compile(r"^dep:(?P<name>[A-Za-z0-9_-]+)(?:=(?P<version>[^=]+))?$")

# rustdoc spellings first, then the hyphenated aliases.
DIRECTIVE_TOKENS: Dict[str, Directive] = {
    "ignore": Directive.SKIP,
    "no_run": Directive.BUILD_ONLY,
    "should_panic": Directive.EXPECT_PANIC,
    "compile_fail": Directive.EXPECT_COMPILE_ERROR,
    "skip": Directive.SKIP,
    "build-only": Directive.BUILD_ONLY,
    "expect-panic": Directive.EXPECT_PANIC,
    "expect-compile-error": Directive.EXPECT_COMPILE_ERROR,
}


@dataclass
class FenceInfo:
    """Parsed view of a fence info string."""

    is_target: bool
    directive: Directive = Directive.DEFAULT
    edition: Optional[str] = None
    dependencies: Tuple[Tuple[str, str], ...] = ()
    warnings: List[str] = field(default_factory=list)


def parse_fence_info(info: str, language: str = "rust") -> FenceInfo:
    """Parse ``info`` and decide whether the fence belongs to ``language``.

    Malformed or conflicting tokens never raise: the fence degrades to
    ``Directive.SKIP`` and the reasons are returned as warnings.
    """
    tokens = [token for token in _TOKEN_SPLIT.split(info.strip()) if token]
    if language.lower() not in (token.lower() for token in tokens):
        return FenceInfo(is_target=False)

    directives: List[Directive] = []
    editions: List[str] = []
    dependencies: Dict[str, str] = {}
    warnings: List[str] = []

    for token in tokens:
        lowered = token.lower()
        if lowered == language.lower():
            continue
        if lowered in DIRECTIVE_TOKENS:
            directive = DIRECTIVE_TOKENS[lowered]
            if directive not in directives:
                directives.append(directive)
            continue
        edition_match = _EDITION_TOKEN.match(lowered)
        if edition_match:
            edition = edition_match.group("edition")
            if edition not in EDITIONS:
                warnings.append(f"unsupported edition {edition!r}")
            elif edition not in editions:
                editions.append(edition)
            continue
        dep_match = _DEP_TOKEN.match(token)
        if dep_match:
            version = (dep_match.group("version") or "*").strip()
            dependencies[dep_match.group("name")] = version
            continue
        warnings.append(f"unrecognized directive {token!r}")

    if len(directives) > 1:
        names = ", ".join(directive.value for directive in directives)
        warnings.append(f"conflicting directives: {names}")
    if len(editions) > 1:
        warnings.append(f"conflicting editions: {', '.join(editions)}")

    directive = directives[0] if directives else Directive.DEFAULT
    if warnings:
        directive = Directive.SKIP

    return FenceInfo(
        is_target=True,
        directive=directive,
        edition=editions[0] if editions else None,
        dependencies=tuple(sorted(dependencies.items())),
        warnings=warnings,
    )


__all__ = ["DIRECTIVE_TOKENS", "FenceInfo", "parse_fence_info"]
