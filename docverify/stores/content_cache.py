"""Persistent, fingerprint-keyed cache of fragment verdicts."""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Dict, Iterable, Optional

from ..logging import get_logger
from ..models import Fragment, Verdict, verdict_from_dict

_CACHE_VERSION = 1

logger = get_logger("stores")


@dataclass(frozen=True)
class CacheEntry:
    """A verdict remembered for one fingerprint."""

    fingerprint: str
    verdict: Verdict
    recorded_at: str


class CacheManifest:
    """On-disk fingerprint -> verdict mapping, loaded once and flushed at shutdown.

    A missing, unreadable or corrupt file yields an empty manifest; entries
    this version does not understand are ignored.
    """

    def __init__(self, path: Path | None) -> None:
        self._path = path
        self._entries: Dict[str, CacheEntry] = {}
        self._dirty = False
        if self._path is not None:
            self._load(self._path)

    @property
    def path(self) -> Path | None:
        return self._path

    def get(self, fingerprint: str) -> Optional[CacheEntry]:
        return self._entries.get(fingerprint)

    def put(self, entry: CacheEntry) -> None:
        self._entries[entry.fingerprint] = entry
        self._dirty = True

    def prune(self, keys_to_keep: Iterable[str]) -> None:
        keep = set(keys_to_keep)
        removed = [key for key in self._entries if key not in keep]
        if removed:
            for key in removed:
                self._entries.pop(key, None)
            self._dirty = True

    def persist(self) -> None:
        if not self._dirty or self._path is None:
            return
        payload = {
            "version": _CACHE_VERSION,
            "entries": {
                key: {"verdict": entry.verdict.to_dict(), "recorded_at": entry.recorded_at}
                for key, entry in self._entries.items()
            },
        }
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.write_text(
                json.dumps(payload, indent=2, sort_keys=True), encoding="utf-8"
            )
        except OSError:
            logger.debug("Unable to write cache manifest %s", self._path, exc_info=True)
            return
        self._dirty = False

    def __len__(self) -> int:
        return len(self._entries)

    # ------------------------------------------------------------------
    # Internal helpers

    def _load(self, path: Path) -> None:
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return
        except (OSError, UnicodeDecodeError, json.JSONDecodeError):
            logger.debug("Ignoring unreadable cache manifest %s", path, exc_info=True)
            return
        if not isinstance(data, dict) or data.get("version") != _CACHE_VERSION:
            return
        entries = data.get("entries")
        if not isinstance(entries, dict):
            return
        valid_entries: Dict[str, CacheEntry] = {}
        for key, raw in entries.items():
            if not isinstance(key, str) or not isinstance(raw, dict):
                continue
            verdict = verdict_from_dict(raw.get("verdict"))
            if verdict is None:
                continue
            recorded_at = raw.get("recorded_at")
            valid_entries[key] = CacheEntry(
                fingerprint=key,
                verdict=verdict,
                recorded_at=recorded_at if isinstance(recorded_at, str) else "",
            )
        self._entries = valid_entries
        self._dirty = False


class ContentCache:
    """Decides which fragments may skip verification.

    Dependencies, edition and toolchain are folded into the fingerprint, so a
    hit never needs a separate staleness check. Only verdicts that met their
    expectation are recorded.
    """

    def __init__(self, manifest: CacheManifest) -> None:
        self.manifest = manifest
        self._seen: set[str] = set()

    def lookup(self, fingerprint: str) -> Optional[Verdict]:
        self._seen.add(fingerprint)
        entry = self.manifest.get(fingerprint)
        if entry is None or not entry.verdict.ok:
            return None
        return entry.verdict

    def record(self, fingerprint: str, verdict: Verdict) -> None:
        self._seen.add(fingerprint)
        if not verdict.ok:
            return
        self.manifest.put(
            CacheEntry(
                fingerprint=fingerprint,
                verdict=verdict,
                recorded_at=datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            )
        )

    def flush(self, *, prune: bool = True) -> None:
        """Drop entries not consulted during this run and write the manifest."""
        if prune:
            self.manifest.prune(self._seen)
        self.manifest.persist()


def normalise_code(code: str) -> str:
    lines = code.replace("\r\n", "\n").replace("\r", "\n").split("\n")
    return "\n".join(line.rstrip() for line in lines).strip("\n")


def fragment_fingerprint(
    fragment: Fragment,
    *,
    edition: str,
    dependency_fingerprint: str,
    toolchain_identity: str,
) -> str:
    """Digest of everything that can change a fragment's verdict."""
    digest = hashlib.sha256()
    for part in (
        normalise_code(fragment.code),
        fragment.directive.value,
        edition,
        dependency_fingerprint,
        toolchain_identity,
    ):
        digest.update(part.encode("utf-8"))
        digest.update(b"\0")
    return digest.hexdigest()


__all__ = [
    "CacheEntry",
    "CacheManifest",
    "ContentCache",
    "fragment_fingerprint",
    "normalise_code",
]
