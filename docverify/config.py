"""Configuration loading for docverify (.docverify.yml)."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence

import yaml

CONFIG_FILENAME = ".docverify.yml"
DEFAULT_WORK_DIR = "doctest_cache"
DEFAULT_TIMEOUT = 60.0
DEFAULT_PRELUDE_TIMEOUT = 600.0
EDITIONS = ("2015", "2018", "2021", "2024")


class ConfigError(RuntimeError):
    """Raised when the configuration or host manifest cannot be used."""


@dataclass
class VerifyConfig:
    """Effective settings for a verification run."""

    root: Path
    work_dir: Path
    target_dir: Path
    language: str = "rust"
    hide_marker: str = "#"
    manifest_dir: Optional[Path] = None
    edition: Optional[str] = None
    externs: List[str] = field(default_factory=list)
    timeout: float = DEFAULT_TIMEOUT
    prelude_timeout: float = DEFAULT_PRELUDE_TIMEOUT
    jobs: int = 1
    annotate: bool = False
    rustc: str = "rustc"
    cargo: str = "cargo"

    @property
    def cache_path(self) -> Path:
        return self.work_dir / "cache.json"

    @property
    def harness_dir(self) -> Path:
        return self.work_dir / "harness"


def load_config(config_path: Path) -> VerifyConfig:
    """Load configuration from disk; a missing file yields defaults."""
    config_file = _resolve_config_path(config_path)
    root = config_file.parent.resolve()

    if not config_file.exists():
        return config_from_mapping({}, root)

    data = _read_config(config_file)
    if not isinstance(data, dict):
        raise ConfigError(f"{CONFIG_FILENAME} must contain a mapping at the root")
    return config_from_mapping(data, root)


def config_from_mapping(data: Mapping[str, Any], root: Path) -> VerifyConfig:
    """Build a config from an already-parsed mapping (YAML file or host table)."""
    root = root.expanduser().resolve()

    work_dir_str = _get(data, "work_dir", _as_str)
    work_dir = _resolve_path(root, work_dir_str) if work_dir_str else root / DEFAULT_WORK_DIR

    target_dir_str = _get(data, "target_dir", _as_str)
    target_dir = _resolve_path(root, target_dir_str) if target_dir_str else work_dir / "target"

    manifest_dir_str = _get(data, "manifest_dir", _as_str)
    manifest_dir = _resolve_path(root, manifest_dir_str) if manifest_dir_str else None

    edition = _get(data, "edition", _as_str)
    if edition is not None and edition not in EDITIONS:
        raise ConfigError(
            f"Unsupported edition {edition!r}; expected one of {', '.join(EDITIONS)}"
        )

    timeout = _get(data, "timeout", _as_float)
    if timeout is not None and timeout <= 0:
        raise ConfigError("timeout must be a positive number of seconds")

    prelude_timeout = _get(data, "prelude_timeout", _as_float)
    if prelude_timeout is not None and prelude_timeout <= 0:
        raise ConfigError("prelude_timeout must be a positive number of seconds")

    jobs = _get(data, "jobs", _as_int)
    if jobs is not None and jobs < 1:
        raise ConfigError("jobs must be at least 1")

    language = _get(data, "language", _as_str) or "rust"
    hide_marker = _get(data, "hide_marker", _as_str) or "#"

    return VerifyConfig(
        root=root,
        work_dir=work_dir,
        target_dir=target_dir,
        language=language.strip().lower(),
        hide_marker=hide_marker,
        manifest_dir=manifest_dir,
        edition=edition,
        externs=_as_str_list(data.get("externs")),
        timeout=timeout if timeout is not None else DEFAULT_TIMEOUT,
        prelude_timeout=(
            prelude_timeout if prelude_timeout is not None else DEFAULT_PRELUDE_TIMEOUT
        ),
        jobs=jobs if jobs is not None else (os.cpu_count() or 1),
        annotate=bool(_get(data, "annotate", _as_bool)),
        rustc=_get(data, "rustc", _as_str) or os.environ.get("RUSTC", "rustc"),
        cargo=_get(data, "cargo", _as_str) or os.environ.get("CARGO", "cargo"),
    )


def _resolve_config_path(config_path: Path) -> Path:
    config_path = config_path.expanduser()
    if config_path.is_dir():
        return (config_path / CONFIG_FILENAME).resolve()
    return config_path.resolve()


def _resolve_path(root: Path, value: str) -> Path:
    path = Path(value).expanduser()
    if not path.is_absolute():
        path = root / path
    return path


def _read_config(path: Path) -> Dict[str, Any]:
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"Unable to read {path}: {exc}") from exc
    if not text.strip():
        return {}
    try:
        loaded = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Failed to parse {path.name}: {exc}") from exc
    return loaded or {}


def _get(data: Mapping[str, Any], key: str, convert: Any) -> Any:
    """Convert an optional key, rejecting values of the wrong type."""
    if key not in data or data[key] is None:
        return None
    value = convert(data[key])
    if value is None:
        raise ConfigError(f"Invalid value for {key!r}: {data[key]!r}")
    return value


def _as_str(value: Any) -> Optional[str]:
    return str(value) if isinstance(value, (str, int, float)) and not isinstance(value, bool) else None


def _as_float(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return None
    return None


def _as_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value)
        except ValueError:
            return None
    return None


def _as_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"true", "yes", "1"}:
            return True
        if lowered in {"false", "no", "0"}:
            return False
    return None


def _as_str_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, Sequence):
        return [str(item) for item in value if isinstance(item, (str, int, float))]
    raise ConfigError(f"Expected a list of strings, got {value!r}")


__all__ = ["ConfigError", "VerifyConfig", "config_from_mapping", "load_config"]
