"""Tests for failure annotations."""

from __future__ import annotations

from docverify.extraction import extract_fragments
from docverify.models import (
    Document,
    FailedCompile,
    FailedRuntime,
    FragmentResult,
    MismatchedExpectation,
    Passed,
)
from docverify.postproc import AnnotationManager, annotate_documents
from docverify.results import Report

TEXT = "# Doc\n\n```rust\nlet a = 1;\n```\n\nBetween.\n\n```rust\nlet b = 2;\n```\n"


def test_markers_follow_failing_fences_only() -> None:
    document = Document(path="doc.md", text=TEXT)
    first, second = extract_fragments(document)
    report = Report(
        [
            FragmentResult(first, Passed()),
            FragmentResult(second, FailedRuntime(reason="boom", line=10)),
        ]
    )

    [annotated] = annotate_documents([document], report)

    assert annotated.text == TEXT + (
        "<!-- docverify:failed:doc_sect_doc_line_9 failed at runtime (boom) at line 10 -->\n"
    )


def test_documents_without_failures_are_unchanged() -> None:
    failing = Document(path="bad.md", text="```rust\nlet x = 1;\n```\n")
    clean = Document(path="good.md", text="```rust\nlet y = 1;\n```\n")
    [fragment] = extract_fragments(failing)
    report = Report([FragmentResult(fragment, FailedCompile(diagnostic="e\nmore"))])

    annotated_bad, annotated_good = annotate_documents([failing, clean], report)

    assert annotated_good is clean
    assert annotated_bad.text.endswith(
        "```\n<!-- docverify:failed:bad_line_1 failed to compile: e -->\n"
    )


def test_markers_are_comment_safe_and_handle_missing_newline() -> None:
    document = Document(path="n.md", text="```rust\nlet x = 1;\n```")
    [fragment] = extract_fragments(document)
    result = FragmentResult(
        fragment, MismatchedExpectation(expected="compile error", actual="a --> b")
    )

    annotated = AnnotationManager().annotate(document, [result])

    assert annotated.text == (
        "```rust\nlet x = 1;\n```\n"
        "<!-- docverify:failed:n_line_1 expected compile error, got a - -> b -->\n"
    )


def test_annotating_twice_is_idempotent() -> None:
    document = Document(path="i.md", text="```rust\nlet x = 1;\n```\ntext\n")
    [fragment] = extract_fragments(document)
    result = FragmentResult(fragment, FailedRuntime(reason="timeout"))
    manager = AnnotationManager()

    once = manager.annotate(document, [result])
    twice = manager.annotate(once, [result])

    assert once.text == twice.text
    assert once.text.count("docverify:failed:i_line_1") == 1
