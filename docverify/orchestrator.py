"""Pipeline orchestration for a verification run."""

from __future__ import annotations

import hashlib
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from .build import BuildOrchestrator, CommandRunner, Toolchain
from .config import EDITIONS, VerifyConfig
from .extraction import FragmentExtractor
from .harness import DependencyManifest, HarnessSynthesizer, HostManifest, load_host_manifest
from .logging import get_logger
from .models import Directive, Document, Fragment, FragmentResult, Skipped, Verdict
from .postproc import annotate_documents
from .results import Report, ResultMapper
from .stores import CacheManifest, ContentCache, fragment_fingerprint

DEFAULT_EDITION = "2021"


@dataclass
class RunOutcome:
    """Everything a host needs after a run."""

    verdicts: Dict[str, Verdict]
    report: Report
    documents: List[Document]

    @property
    def exit_code(self) -> int:
        return self.report.exit_code


class Orchestrator:
    """Coordinates extraction, caching, synthesis, building and reporting."""

    def __init__(
        self,
        config: VerifyConfig,
        *,
        toolchain: Toolchain | None = None,
        runner: CommandRunner | None = None,
        extractor: FragmentExtractor | None = None,
        mapper: ResultMapper | None = None,
        use_cache: bool = True,
    ) -> None:
        self.config = config
        self.toolchain = toolchain or Toolchain(config.rustc, config.cargo, runner=runner)
        self.extractor = extractor or FragmentExtractor(config.language, config.hide_marker)
        self.mapper = mapper or ResultMapper()
        self.use_cache = use_cache
        self.logger = get_logger("orchestrator")

    def run(self, documents: Sequence[Document]) -> RunOutcome:
        """Verify every fragment in ``documents``.

        ``ConfigError`` and ``ToolchainError`` are raised before any fragment
        is compiled; everything else ends up as a verdict.
        """
        config = self.config
        config.work_dir.mkdir(parents=True, exist_ok=True)

        identity = self.toolchain.identity(config.work_dir)
        host = self._load_host()
        base_manifest = host.dependencies if host else DependencyManifest()
        default_edition = self._default_edition(host)

        fragments: List[Fragment] = []
        for document in documents:
            fragments.extend(self.extractor.extract(document))
        self.logger.info(
            "Found %d fragment(s) in %d document(s)", len(fragments), len(documents)
        )

        active = [fragment for fragment in fragments if fragment.directive is not Directive.SKIP]
        cargo_version = ""
        if any(not base_manifest.merged(fragment.dependencies).empty for fragment in active):
            cargo_version = self.toolchain.require_cargo(config.work_dir)

        cache = ContentCache(CacheManifest(config.cache_path if self.use_cache else None))
        verdicts: Dict[str, Verdict] = {}
        fingerprints: Dict[str, str] = {}
        pending: List[Fragment] = []
        for fragment in fragments:
            if fragment.directive is Directive.SKIP:
                verdicts[fragment.id] = Skipped()
                continue
            fingerprint = fragment_fingerprint(
                fragment,
                edition=fragment.edition or default_edition,
                dependency_fingerprint=self._dependency_fingerprint(
                    base_manifest.merged(fragment.dependencies), cargo_version
                ),
                toolchain_identity=identity,
            )
            fingerprints[fragment.id] = fingerprint
            if cache.lookup(fingerprint) is not None:
                verdicts[fragment.id] = Skipped(cached=True)
                continue
            pending.append(fragment)

        if pending:
            self.logger.info(
                "Verifying %d fragment(s) (%d cached)",
                len(pending),
                len(fingerprints) - len(pending),
            )
            verdicts.update(self._verify(pending, base_manifest, default_edition))

        for fragment in pending:
            cache.record(fingerprints[fragment.id], verdicts[fragment.id])
        cache.flush()

        report = Report([FragmentResult(fragment, verdicts[fragment.id]) for fragment in fragments])
        if config.annotate:
            returned = annotate_documents(documents, report)
        else:
            returned = list(documents)
        self.logger.info("%s", report.summary())
        return RunOutcome(verdicts=verdicts, report=report, documents=returned)

    def clean(self) -> None:
        """Remove harness projects and the cache manifest; build artifacts stay."""
        harness_dir = self.config.harness_dir
        if harness_dir.exists():
            shutil.rmtree(harness_dir)
        prelude_dir = self._prelude_dir()
        if prelude_dir.exists():
            shutil.rmtree(prelude_dir)
        cache_path = self.config.cache_path
        if cache_path.exists():
            cache_path.unlink()
        self.logger.info("Removed harness projects and cache under %s", self.config.work_dir)

    # ------------------------------------------------------------------
    # Internal helpers

    def _verify(
        self,
        fragments: Sequence[Fragment],
        base_manifest: DependencyManifest,
        default_edition: str,
    ) -> Dict[str, Verdict]:
        config = self.config
        synthesizer = HarnessSynthesizer(
            config.harness_dir, base_manifest, default_edition=default_edition
        )
        projects = synthesizer.synthesize(fragments)
        builder = BuildOrchestrator(
            self.toolchain,
            synthesizer,
            target_dir=config.target_dir,
            prelude_dir=self._prelude_dir(),
            timeout=config.timeout,
            prelude_timeout=config.prelude_timeout,
            jobs=config.jobs,
            externs=config.externs,
        )
        verdicts: Dict[str, Verdict] = {}
        for build in builder.build_all(projects):
            verdicts.update(self.mapper.map_build(build))
        return verdicts

    def _load_host(self) -> Optional[HostManifest]:
        if self.config.manifest_dir is None:
            return None
        host = load_host_manifest(self.config.manifest_dir)
        self.logger.debug(
            "Loaded host manifest %s (%d dependencies)",
            host.path,
            len(host.dependencies.dependencies),
        )
        return host

    def _default_edition(self, host: Optional[HostManifest]) -> str:
        if self.config.edition:
            return self.config.edition
        if host is not None and host.edition in EDITIONS:
            return host.edition
        return DEFAULT_EDITION

    def _dependency_fingerprint(self, manifest: DependencyManifest, cargo_version: str) -> str:
        """Fold configured externs, and the cargo version resolving dependencies, in."""
        parts = list(self.config.externs)
        if not manifest.empty:
            parts.append(cargo_version)
        if not parts:
            return manifest.fingerprint
        digest = hashlib.sha256(manifest.fingerprint.encode("utf-8"))
        for part in parts:
            digest.update(b"\0")
            digest.update(part.encode("utf-8"))
        return digest.hexdigest()

    def _prelude_dir(self) -> Path:
        return self.config.work_dir / "preludes"


__all__ = ["DEFAULT_EDITION", "Orchestrator", "RunOutcome"]
