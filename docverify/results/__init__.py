"""Result mapping and reporting."""

from .mapper import (
    Diagnostic,
    EntryStatus,
    ResultMapper,
    TestEntryOutcome,
    panic_message,
    parse_diagnostics,
    parse_test_output,
    started_entries,
)
from .reporter import Report, failure_detail

__all__ = [
    "Diagnostic",
    "EntryStatus",
    "Report",
    "ResultMapper",
    "TestEntryOutcome",
    "failure_detail",
    "panic_message",
    "parse_diagnostics",
    "parse_test_output",
    "started_entries",
]
