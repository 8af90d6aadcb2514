"""Harness project synthesis."""

from .manifest import DependencyManifest, HostManifest, load_host_manifest, path_sources_digest
from .synthesizer import (
    ENTRY_FUNCTION,
    CompilationGroup,
    HarnessProject,
    HarnessSynthesizer,
    LocationTable,
    ProjectKind,
)

__all__ = [
    "ENTRY_FUNCTION",
    "CompilationGroup",
    "DependencyManifest",
    "HarnessProject",
    "HarnessSynthesizer",
    "HostManifest",
    "LocationTable",
    "ProjectKind",
    "load_host_manifest",
    "path_sources_digest",
]
