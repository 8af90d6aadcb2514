"""Core data models shared across docverify components."""

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, ClassVar, Dict, Optional, Tuple, Type


@dataclass(frozen=True)
class Document:
    """A documentation file supplied by the host."""

    path: str
    text: str


class Directive(Enum):
    """Declared verification intent of a fragment."""

    DEFAULT = "default"
    SKIP = "skip"
    BUILD_ONLY = "build-only"
    EXPECT_PANIC = "expect-panic"
    EXPECT_COMPILE_ERROR = "expect-compile-error"

    @property
    def expectation(self) -> str:
        return _EXPECTATIONS[self]

    @property
    def shares_compilation(self) -> bool:
        """Whether fragments with this directive may join the shared project."""
        return self in (Directive.DEFAULT, Directive.BUILD_ONLY, Directive.EXPECT_PANIC)

    @property
    def runs(self) -> bool:
        return self in (Directive.DEFAULT, Directive.EXPECT_PANIC)


_EXPECTATIONS = {
    Directive.DEFAULT: "normal exit",
    Directive.SKIP: "nothing",
    Directive.BUILD_ONLY: "successful compile",
    Directive.EXPECT_PANIC: "panic",
    Directive.EXPECT_COMPILE_ERROR: "compile error",
}


@dataclass(frozen=True)
class SourceLine:
    """One line of fragment code, tied to its line number in the document."""

    number: int
    text: str
    hidden: bool = False


@dataclass(frozen=True)
class Fragment:
    """A fenced code sample extracted from a document."""

    id: str
    document: str
    ordinal: int
    name: str
    start_line: int
    end_line: int
    start_offset: int
    end_offset: int
    lines: Tuple[SourceLine, ...]
    directive: Directive
    dependencies: Tuple[Tuple[str, str], ...] = ()
    edition: Optional[str] = None
    warnings: Tuple[str, ...] = ()

    @property
    def code(self) -> str:
        """Compiler-facing text: hide markers stripped, hidden lines kept."""
        return "".join(f"{line.text}\n" for line in self.lines)

    @property
    def visible_code(self) -> str:
        """Reader-facing excerpt with hidden lines removed."""
        return "".join(f"{line.text}\n" for line in self.lines if not line.hidden)

    def document_line(self, index: int) -> int:
        """Map a 0-based code line index to its document line number."""
        if not self.lines:
            return self.start_line
        index = max(0, min(index, len(self.lines) - 1))
        return self.lines[index].number

    @property
    def span(self) -> str:
        return f"{self.document}:{self.start_line}-{self.end_line}"


# ----------------------------------------------------------------------
# Verdicts


@dataclass(frozen=True)
class Verdict:
    """Base class for per-fragment verification results."""

    kind: ClassVar[str] = "verdict"

    @property
    def ok(self) -> bool:
        return True

    def describe(self) -> str:
        return self.kind

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["kind"] = self.kind
        return data


@dataclass(frozen=True)
class Passed(Verdict):
    kind: ClassVar[str] = "passed"

    def describe(self) -> str:
        return "passed"


@dataclass(frozen=True)
class FailedCompile(Verdict):
    kind: ClassVar[str] = "failed-compile"

    diagnostic: str
    line: Optional[int] = None

    @property
    def ok(self) -> bool:
        return False

    def describe(self) -> str:
        return "failed to compile"


@dataclass(frozen=True)
class FailedRuntime(Verdict):
    kind: ClassVar[str] = "failed-runtime"

    reason: str
    line: Optional[int] = None
    output: str = ""

    @property
    def ok(self) -> bool:
        return False

    def describe(self) -> str:
        return f"failed at runtime ({self.reason})"


@dataclass(frozen=True)
class Skipped(Verdict):
    kind: ClassVar[str] = "skipped"

    cached: bool = False

    def describe(self) -> str:
        return "skipped (cached)" if self.cached else "skipped"


@dataclass(frozen=True)
class MismatchedExpectation(Verdict):
    kind: ClassVar[str] = "mismatched"

    expected: str
    actual: str
    output: str = ""

    @property
    def ok(self) -> bool:
        return False

    def describe(self) -> str:
        return f"expected {self.expected}, got {self.actual}"


_VERDICT_TYPES: Dict[str, Type[Verdict]] = {
    cls.kind: cls
    for cls in (Passed, FailedCompile, FailedRuntime, Skipped, MismatchedExpectation)
}


def verdict_from_dict(payload: object) -> Optional[Verdict]:
    """Rebuild a verdict from its serialised form; unknown shapes yield None."""
    if not isinstance(payload, dict):
        return None
    cls = _VERDICT_TYPES.get(str(payload.get("kind")))
    if cls is None:
        return None
    fields = {key: value for key, value in payload.items() if key != "kind"}
    try:
        return cls(**fields)
    except TypeError:
        return None


@dataclass
class FragmentResult:
    """Pairs a fragment with its verdict for reporting."""

    fragment: Fragment
    verdict: Verdict
