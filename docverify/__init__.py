"""docverify: compile and run the code samples embedded in documentation."""

from .config import ConfigError, VerifyConfig, load_config
from .models import (
    Directive,
    Document,
    FailedCompile,
    FailedRuntime,
    Fragment,
    FragmentResult,
    MismatchedExpectation,
    Passed,
    Skipped,
    Verdict,
)
from .orchestrator import Orchestrator, RunOutcome

__all__ = [
    "ConfigError",
    "Directive",
    "Document",
    "FailedCompile",
    "FailedRuntime",
    "Fragment",
    "FragmentResult",
    "MismatchedExpectation",
    "Orchestrator",
    "Passed",
    "RunOutcome",
    "Skipped",
    "Verdict",
    "VerifyConfig",
    "load_config",
]
