"""Synthesis of compilable harness projects from extracted fragments."""

from __future__ import annotations

import json
import re
import shutil
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

from jinja2 import Environment, FileSystemLoader

from ..extraction import sanitize_name
from ..logging import get_logger
from ..models import Directive, Fragment
from .manifest import DependencyManifest

ENTRY_FUNCTION = "doc_entry"

_MAIN_FN = re.compile(
    r"^\s*(?:pub(?:\([^)]*\))?\s+)?(?:async\s+)?(?:unsafe\s+)?fn\s+main\s*\(",
    re.MULTILINE,
)
_CRATE_EXPORT = re.compile(
    r"#\[\s*(?:unsafe\s*\(\s*)?(?:macro_export|no_mangle|export_name)\b"
)
_BARE_KEY = re.compile(r"^[A-Za-z0-9_-]+$")
_MAX_MODULE_NAME = 64


class ProjectKind(Enum):
    SHARED = "shared"
    ISOLATED = "isolated"


@dataclass
class CompilationGroup:
    """Fragments that will be compiled together in one invocation."""

    kind: ProjectKind
    edition: str
    manifest: DependencyManifest
    fragments: List[Fragment]


class LocationTable:
    """Index from generated source lines back to document lines.

    The opposite direction (fragment to generated module) is
    ``HarnessProject.modules``.
    """

    def __init__(self) -> None:
        self._by_file: Dict[str, Tuple[Fragment, int]] = {}

    def add(self, fragment: Fragment, file: str, first_code_line: int) -> None:
        self._by_file[_normalise_path(file)] = (fragment, first_code_line)

    def resolve(self, file: str, line: int) -> Optional[Tuple[Fragment, int]]:
        """Map a generated ``file:line`` to ``(fragment, document line)``.

        Lines outside the fragment's own code (wrapper and entry point) map to
        the fence line.
        """
        entry = self._lookup_file(file)
        if entry is None:
            return None
        fragment, first_code_line = entry
        index = line - first_code_line
        if 0 <= index < len(fragment.lines):
            return fragment, fragment.document_line(index)
        return fragment, fragment.start_line

    def _lookup_file(self, file: str) -> Optional[Tuple[Fragment, int]]:
        file = _normalise_path(file)
        entry = self._by_file.get(file)
        if entry is not None:
            return entry
        for known, value in self._by_file.items():
            if file.endswith(f"/{known}"):
                return value
        return None

    def __len__(self) -> int:
        return len(self._by_file)


@dataclass
class HarnessProject:
    """A synthesized crate embedding fragments as addressable test entries."""

    name: str
    kind: ProjectKind
    root: Path
    edition: str
    manifest: DependencyManifest
    fragments: List[Fragment]
    locations: LocationTable
    modules: Dict[str, str] = field(default_factory=dict)
    sources: List[Path] = field(default_factory=list)

    @property
    def crate_root(self) -> Path:
        return self.root / "src" / "lib.rs"

    def entry_name(self, fragment: Fragment) -> str:
        return f"{self.modules[fragment.id]}::{ENTRY_FUNCTION}"


class HarnessSynthesizer:
    """Partitions fragments under the isolation rule and writes harness crates."""

    def __init__(
        self,
        harness_dir: Path,
        base_manifest: DependencyManifest | None = None,
        *,
        default_edition: str = "2021",
        templates_dir: Path | None = None,
    ) -> None:
        self.harness_dir = harness_dir
        self.base_manifest = base_manifest or DependencyManifest()
        self.default_edition = default_edition
        self.templates_dir = templates_dir or Path(__file__).with_name("templates")
        self._env = self._create_env(self.templates_dir)
        self.logger = get_logger("harness")

    def partition(self, fragments: Sequence[Fragment]) -> List[CompilationGroup]:
        """Group fragments: shared per (edition, dependencies), isolated per compile-fail.

        Fragments exporting items at the crate root (``#[macro_export]``,
        ``#[no_mangle]``, ``#[export_name]``) get a shared project of their
        own, since two of them may legitimately use the same name.
        """
        shared: Dict[Tuple[str, str], CompilationGroup] = {}
        standalone: List[CompilationGroup] = []
        isolated: List[CompilationGroup] = []
        for fragment in fragments:
            if fragment.directive is Directive.SKIP:
                continue
            edition = fragment.edition or self.default_edition
            manifest = self.base_manifest.merged(fragment.dependencies)
            if fragment.directive is Directive.EXPECT_COMPILE_ERROR:
                isolated.append(
                    CompilationGroup(ProjectKind.ISOLATED, edition, manifest, [fragment])
                )
                continue
            if _CRATE_EXPORT.search(fragment.code):
                standalone.append(
                    CompilationGroup(ProjectKind.SHARED, edition, manifest, [fragment])
                )
                continue
            key = (edition, manifest.fingerprint)
            group = shared.get(key)
            if group is None:
                group = CompilationGroup(ProjectKind.SHARED, edition, manifest, [])
                shared[key] = group
            group.fragments.append(fragment)
        return list(shared.values()) + standalone + isolated

    def synthesize(self, fragments: Sequence[Fragment]) -> List[HarnessProject]:
        """Write a fresh set of harness projects for ``fragments``."""
        if self.harness_dir.exists():
            shutil.rmtree(self.harness_dir)
        projects: List[HarnessProject] = []
        for index, group in enumerate(self.partition(fragments)):
            projects.append(self.write(group, index))
        self.logger.debug(
            "Synthesized %d harness project(s) for %d fragment(s)",
            len(projects),
            len(fragments),
        )
        return projects

    def write(self, group: CompilationGroup, index: int) -> HarnessProject:
        name = self._project_name(group, index)
        root = self.harness_dir / name
        src_dir = root / "src"
        src_dir.mkdir(parents=True, exist_ok=True)

        project = HarnessProject(
            name=name,
            kind=group.kind,
            root=root,
            edition=group.edition,
            manifest=group.manifest,
            fragments=list(group.fragments),
            locations=LocationTable(),
        )

        modules: List[Dict[str, Any]] = []
        for position, fragment in enumerate(group.fragments):
            module = _module_name(position, fragment)
            wrap = _MAIN_FN.search(fragment.code) is None
            source = self._env.get_template("fragment.rs.j2").render(
                wrap=wrap,
                code=fragment.code.rstrip("\n"),
                build_only=fragment.directive is Directive.BUILD_ONLY,
            )
            path = src_dir / f"{module}.rs"
            path.write_text(source + "\n", encoding="utf-8")
            project.modules[fragment.id] = module
            project.sources.append(path)
            project.locations.add(fragment, f"src/{module}.rs", 2 if wrap else 1)
            modules.append({"name": module, "fragment": fragment})

        lib_source = self._env.get_template("lib.rs.j2").render(
            modules=modules, fragment_count=len(modules)
        )
        project.crate_root.write_text(lib_source + "\n", encoding="utf-8")
        project.sources.insert(0, project.crate_root)
        return project

    def write_prelude(self, manifest: DependencyManifest, root: Path) -> Path:
        """Write a dependency-only crate whose build warms the shared artifact cache."""
        name = f"docverify_prelude_{manifest.fingerprint[:12]}"
        (root / "src").mkdir(parents=True, exist_ok=True)
        cargo_toml = self._env.get_template("Cargo.toml.j2").render(
            name=name,
            edition="2021",
            dependencies=sorted(manifest.dependencies.items()),
        )
        (root / "Cargo.toml").write_text(cargo_toml + "\n", encoding="utf-8")
        (root / "src" / "lib.rs").write_text("", encoding="utf-8")
        if manifest.lockfile is not None:
            (root / "Cargo.lock").write_text(manifest.lockfile, encoding="utf-8")
        return root

    # ------------------------------------------------------------------
    # Internal helpers

    @staticmethod
    def _project_name(group: CompilationGroup, index: int) -> str:
        if group.kind is ProjectKind.SHARED:
            return f"shared_{index:03d}_e{group.edition}"
        fragment = group.fragments[0]
        return f"isolated_{index:03d}_{sanitize_name(fragment.name)[:40]}".rstrip("_")

    @staticmethod
    def _create_env(templates_dir: Path) -> Environment:
        env = Environment(
            loader=FileSystemLoader(str(templates_dir)),
            autoescape=False,
            trim_blocks=True,
            lstrip_blocks=True,
        )
        env.filters["toml_key"] = _toml_key
        env.filters["toml_value"] = _toml_value
        return env


def _module_name(position: int, fragment: Fragment) -> str:
    name = f"d{position}_{sanitize_name(fragment.name)}"
    return name[:_MAX_MODULE_NAME].rstrip("_")


def _normalise_path(path: str) -> str:
    normalised = path.replace("\\", "/")
    while normalised.startswith("./"):
        normalised = normalised[2:]
    return normalised


def _toml_key(key: str) -> str:
    return key if _BARE_KEY.match(key) else json.dumps(key)


def _toml_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, str):
        return json.dumps(value)
    if isinstance(value, (list, tuple)):
        return "[" + ", ".join(_toml_value(item) for item in value) + "]"
    if isinstance(value, dict):
        items = ", ".join(f"{_toml_key(str(k))} = {_toml_value(v)}" for k, v in value.items())
        return "{ " + items + " }" if items else "{}"
    raise TypeError(f"Unsupported manifest value: {value!r}")


__all__ = [
    "ENTRY_FUNCTION",
    "CompilationGroup",
    "HarnessProject",
    "HarnessSynthesizer",
    "LocationTable",
    "ProjectKind",
]
