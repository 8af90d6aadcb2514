"""Host package manifest loading and dependency merging."""

from __future__ import annotations

import hashlib
import json
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Tuple

from ..config import ConfigError

_SOURCE_SUFFIXES = {".rs", ".toml"}
_ROOT_FILES = ("Cargo.toml", "build.rs")


@dataclass
class DependencyManifest:
    """Dependencies (name -> cargo spec) shared by a set of fragments."""

    dependencies: Dict[str, Any] = field(default_factory=dict)
    lockfile: Optional[str] = None
    source_digest: str = ""

    @property
    def empty(self) -> bool:
        return not self.dependencies

    def merged(self, overrides: Iterable[Tuple[str, str]]) -> "DependencyManifest":
        """Return a copy with per-fragment overrides applied (overrides win)."""
        overrides = list(overrides)
        if not overrides:
            return self
        dependencies = dict(self.dependencies)
        for name, version in overrides:
            dependencies[name] = version
        return DependencyManifest(
            dependencies=dependencies,
            lockfile=self.lockfile,
            source_digest=self.source_digest,
        )

    @property
    def fingerprint(self) -> str:
        digest = hashlib.sha256()
        digest.update(json.dumps(self.dependencies, sort_keys=True).encode("utf-8"))
        digest.update(b"\0")
        digest.update((self.lockfile or "").encode("utf-8"))
        digest.update(b"\0")
        digest.update(self.source_digest.encode("utf-8"))
        return digest.hexdigest()

    def crate_names(self) -> Dict[str, str]:
        """Map each dependency's library name to the name code refers to it by."""
        names: Dict[str, str] = {}
        for key, spec in self.dependencies.items():
            package = key
            if isinstance(spec, dict) and isinstance(spec.get("package"), str):
                package = spec["package"]
            names[package.replace("-", "_")] = key.replace("-", "_")
        return names


@dataclass
class HostManifest:
    """The documented crate's own manifest, merged into every harness."""

    path: Path
    package_name: Optional[str]
    edition: Optional[str]
    dependencies: DependencyManifest


def load_host_manifest(manifest_dir: Path) -> HostManifest:
    """Read ``Cargo.toml`` (and ``Cargo.lock`` when present) from ``manifest_dir``."""
    manifest_path = manifest_dir / "Cargo.toml"
    try:
        data = tomllib.loads(manifest_path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise ConfigError(f"Unable to read host manifest {manifest_path}: {exc}") from exc
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Malformed host manifest {manifest_path}: {exc}") from exc

    workspace_deps = _as_dict(_as_dict(data.get("workspace")).get("dependencies"))
    dependencies: Dict[str, Any] = {}
    for name, spec in _as_dict(data.get("dependencies")).items():
        dependencies[name] = _normalise_spec(spec, manifest_dir, workspace_deps.get(name))

    package = _as_dict(data.get("package"))
    package_name = package.get("name") if isinstance(package.get("name"), str) else None
    edition = package.get("edition")
    if not isinstance(edition, str):
        edition = None

    if package_name and _has_library(data, manifest_dir):
        dependencies[package_name] = {"path": str(manifest_dir.resolve())}

    lockfile = None
    lock_path = manifest_dir / "Cargo.lock"
    if lock_path.is_file():
        try:
            lockfile = lock_path.read_text(encoding="utf-8")
        except OSError as exc:
            raise ConfigError(f"Unable to read lock file {lock_path}: {exc}") from exc

    return HostManifest(
        path=manifest_path,
        package_name=package_name,
        edition=edition,
        dependencies=DependencyManifest(
            dependencies=dependencies,
            lockfile=lockfile,
            source_digest=path_sources_digest(_path_dependencies(dependencies)),
        ),
    )


def _normalise_spec(spec: Any, manifest_dir: Path, workspace_spec: Any) -> Any:
    if isinstance(spec, dict) and spec.get("workspace") is True and workspace_spec is not None:
        inherited = dict(workspace_spec) if isinstance(workspace_spec, dict) else {"version": workspace_spec}
        extra = {key: value for key, value in spec.items() if key != "workspace"}
        inherited.update(extra)
        spec = inherited
    if isinstance(spec, dict) and isinstance(spec.get("path"), str):
        path = Path(spec["path"])
        if not path.is_absolute():
            spec = {**spec, "path": str((manifest_dir / path).resolve())}
    return spec


def path_sources_digest(roots: Iterable[Path]) -> str:
    """Hash the Rust sources and manifests under local path dependencies."""
    digest = hashlib.sha256()
    for root in sorted(set(roots)):
        if not root.is_dir():
            continue
        files = [root / name for name in _ROOT_FILES]
        files.extend(sorted((root / "src").rglob("*")))
        for path in files:
            if not path.is_file() or path.suffix not in _SOURCE_SUFFIXES:
                continue
            digest.update(str(path).encode("utf-8"))
            digest.update(b"\0")
            digest.update(path.read_bytes())
    return digest.hexdigest()


def _path_dependencies(dependencies: Dict[str, Any]) -> Iterable[Path]:
    for spec in dependencies.values():
        if isinstance(spec, dict) and isinstance(spec.get("path"), str):
            yield Path(spec["path"])


def _has_library(data: Dict[str, Any], manifest_dir: Path) -> bool:
    if "lib" in data:
        return True
    return (manifest_dir / "src" / "lib.rs").is_file()


def _as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


__all__ = ["DependencyManifest", "HostManifest", "load_host_manifest", "path_sources_digest"]
