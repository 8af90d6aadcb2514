"""End-to-end pipeline tests against the scripted toolchain."""

from __future__ import annotations

import dataclasses
from pathlib import Path

import pytest

from docverify.build import ToolchainError
from docverify.config import ConfigError, VerifyConfig
from docverify.models import (
    Document,
    FailedCompile,
    FailedRuntime,
    MismatchedExpectation,
    Passed,
    Skipped,
)
from docverify.orchestrator import Orchestrator
from tests._fixtures.documents import markdown
from tests._fixtures.fake_toolchain import MONO_ERROR, FakeToolchain

GUIDE = markdown(
    "guide.md",
    """
    # Guide

    ```rust
    let total = 1 + 2;
    assert_eq!(total, 3);
    ```

    ```rust,should_panic
    panic!("always");
    ```

    ```rust,no_run
    fn main() {
        loop {}
    }
    ```

    ```rust,compile_fail
    let broken = undefined_value;
    ```

    ```rust,ignore
    this is not rust
    ```
    """,
)


def _verdicts(outcome):
    return {
        fragment_result.fragment.start_line: fragment_result.verdict
        for fragment_result in outcome.report.results
    }


def test_every_expectation_is_met(orchestrator: Orchestrator, fake_toolchain: FakeToolchain) -> None:
    outcome = orchestrator.run([GUIDE])

    assert _verdicts(outcome) == {
        3: Passed(),
        8: Passed(),
        12: Passed(),
        18: Passed(),
        22: Skipped(),
    }
    assert outcome.exit_code == 0
    # one shared compile plus one isolated compile
    assert len(fake_toolchain.compiles) == 2
    # the build-only fragment is never executed
    assert len(fake_toolchain.executions) == 2
    assert outcome.documents == [GUIDE]


def test_second_run_is_fully_cached(
    orchestrator: Orchestrator, fake_toolchain: FakeToolchain
) -> None:
    orchestrator.run([GUIDE])
    fake_toolchain.reset()

    outcome = orchestrator.run([GUIDE])

    verdicts = _verdicts(outcome)
    assert all(verdicts[line] == Skipped(cached=True) for line in (3, 8, 12, 18))
    assert verdicts[22] == Skipped()
    assert fake_toolchain.compiles == []
    assert fake_toolchain.executions == []
    assert outcome.exit_code == 0


def test_changing_one_fragment_reverifies_only_that_fragment(
    orchestrator: Orchestrator, fake_toolchain: FakeToolchain
) -> None:
    orchestrator.run([GUIDE])
    fake_toolchain.reset()
    edited = Document(path=GUIDE.path, text=GUIDE.text.replace("1 + 2", "2 + 1"))

    outcome = orchestrator.run([edited])

    verdicts = _verdicts(outcome)
    assert verdicts[3] == Passed()
    assert verdicts[8] == Skipped(cached=True)
    assert len(fake_toolchain.compiles) == 1
    assert len(fake_toolchain.executions) == 1


def test_toolchain_change_invalidates_cache(
    verify_config: VerifyConfig, fake_toolchain: FakeToolchain
) -> None:
    Orchestrator(verify_config, runner=fake_toolchain).run([GUIDE])
    upgraded = FakeToolchain(rustc_version="rustc 1.81.0 (fake)\nhost: x86_64-unknown-linux-gnu")

    outcome = Orchestrator(verify_config, runner=upgraded).run([GUIDE])

    assert _verdicts(outcome)[3] == Passed()
    assert len(upgraded.compiles) == 2


def test_failures_are_not_cached(orchestrator: Orchestrator, fake_toolchain: FakeToolchain) -> None:
    document = markdown(
        "bad.md",
        """
        ```rust
        let x = undefined_value;
        ```
        """,
    )

    first = orchestrator.run([document])
    fake_toolchain.reset()
    second = orchestrator.run([document])

    assert isinstance(_verdicts(first)[1], FailedCompile)
    assert isinstance(_verdicts(second)[1], FailedCompile)
    assert len(fake_toolchain.compiles) == 1
    assert second.exit_code == 1


def test_no_cache_always_verifies(verify_config: VerifyConfig, fake_toolchain: FakeToolchain) -> None:
    Orchestrator(verify_config, runner=fake_toolchain).run([GUIDE])
    fake_toolchain.reset()

    outcome = Orchestrator(verify_config, runner=fake_toolchain, use_cache=False).run([GUIDE])

    assert _verdicts(outcome)[3] == Passed()
    assert len(fake_toolchain.compiles) == 2


def test_shared_compile_failure_spreads_but_diagnostic_is_local(
    orchestrator: Orchestrator,
) -> None:
    document = markdown(
        "shared.md",
        """
        ```rust
        let ok = 1;
        ```

        ```rust
        let first = 1;
        let bad = undefined_value;
        ```
        """,
    )

    outcome = orchestrator.run([document])

    verdicts = _verdicts(outcome)
    innocent, culprit = verdicts[1], verdicts[5]
    assert isinstance(culprit, FailedCompile)
    assert culprit.line == 7
    assert culprit.diagnostic.startswith("shared.md:7: error[E0425]")
    assert isinstance(innocent, FailedCompile)
    assert "shared_line_5" in innocent.diagnostic


def test_compile_fail_fragments_do_not_affect_each_other(orchestrator: Orchestrator) -> None:
    document = markdown(
        "iso.md",
        """
        ```rust,compile_fail
        let a = undefined_value;
        ```

        ```rust,compile_fail
        let b = 1;
        ```

        ```rust
        let c = 1;
        ```
        """,
    )

    verdicts = _verdicts(orchestrator.run([document]))

    assert verdicts[1] == Passed()
    assert verdicts[5] == MismatchedExpectation(
        expected="compile error", actual="successful compile"
    )
    assert verdicts[9] == Passed()


def test_runtime_outcomes(orchestrator: Orchestrator) -> None:
    document = markdown(
        "rt.md",
        """
        ```rust
        let n = 1;
        panic!("kaboom");
        ```

        ```rust,should_panic
        let quiet = 1;
        ```

        ```rust,should_panic
        std::process::abort();
        ```

        ```rust
        loop {}
        ```

        ```rust
        let survivor = 1;
        ```
        """,
    )

    verdicts = _verdicts(orchestrator.run([document]))

    panicked = verdicts[1]
    assert isinstance(panicked, FailedRuntime)
    assert panicked.reason == "kaboom"
    assert panicked.line == 3
    assert verdicts[6] == MismatchedExpectation(
        expected="panic", actual="normal exit", output=verdicts[6].output
    )
    assert verdicts[10] == Passed()
    timed_out = verdicts[14]
    assert isinstance(timed_out, FailedRuntime) and timed_out.reason == "timeout"
    assert verdicts[18] == Passed()


def test_dependencies_from_fence_and_host_manifest(
    tmp_path: Path, verify_config: VerifyConfig, fake_toolchain: FakeToolchain
) -> None:
    host = tmp_path / "host"
    (host / "src").mkdir(parents=True)
    (host / "src" / "lib.rs").write_text("pub fn answer() -> u32 { 42 }\n", encoding="utf-8")
    (host / "Cargo.toml").write_text(
        '[package]\nname = "host_lib"\nedition = "2018"\n\n[dependencies]\nitoa = "1"\n',
        encoding="utf-8",
    )
    config = dataclasses.replace(verify_config, manifest_dir=host)
    document = markdown(
        "deps.md",
        """
        ```rust
        use host_lib::answer;
        assert_eq!(answer(), 42);
        ```

        ```rust,dep:ryu=1
        use ryu::Buffer;
        use itoa::Buffer as IntBuffer;
        ```

        ```rust,edition2021
        use missing_crate::Thing;
        ```
        """,
    )

    outcome = Orchestrator(config, runner=fake_toolchain).run([document])

    verdicts = _verdicts(outcome)
    assert verdicts[1] == Passed()
    assert verdicts[6] == Passed()
    assert isinstance(verdicts[11], FailedCompile)
    assert "unresolved import `missing_crate`" in verdicts[11].diagnostic
    # one prelude per distinct dependency set
    assert len(fake_toolchain.preludes) == 2
    # the host manifest's edition is the default
    editions = sorted(
        arg for call in fake_toolchain.compiles for arg in call.args if arg.startswith("--edition=")
    )
    assert editions == ["--edition=2018", "--edition=2018", "--edition=2021"]


def test_host_source_change_invalidates_cache(
    tmp_path: Path, verify_config: VerifyConfig, fake_toolchain: FakeToolchain
) -> None:
    host = tmp_path / "host"
    (host / "src").mkdir(parents=True)
    lib = host / "src" / "lib.rs"
    lib.write_text("pub fn answer() -> u32 { 42 }\n", encoding="utf-8")
    (host / "Cargo.toml").write_text('[package]\nname = "host_lib"\n', encoding="utf-8")
    config = dataclasses.replace(verify_config, manifest_dir=host)
    document = Document(path="h.md", text="```rust\nuse host_lib::answer;\n```\n")

    Orchestrator(config, runner=fake_toolchain).run([document])
    fake_toolchain.reset()
    lib.write_text("pub fn answer() -> u32 { 43 }\n", encoding="utf-8")
    outcome = Orchestrator(config, runner=fake_toolchain).run([document])

    assert _verdicts(outcome)[1] == Passed()
    assert len(fake_toolchain.compiles) == 1


def test_missing_toolchain_is_fatal_before_any_fragment(verify_config: VerifyConfig) -> None:
    calls = []

    def runner(args, *, cwd, env=None, timeout=None):
        calls.append(list(args))
        raise ToolchainError("Unable to locate 'rustc'. Is it installed and on PATH?")

    with pytest.raises(ToolchainError):
        Orchestrator(verify_config, runner=runner).run([GUIDE])

    assert len(calls) == 1 and calls[0][1:] == ["-vV"]
    assert not verify_config.harness_dir.exists()


def test_missing_cargo_is_fatal_only_with_dependencies(
    verify_config: VerifyConfig,
) -> None:
    fake = FakeToolchain(cargo_available=False)
    with_deps = Document(path="d.md", text="```rust,dep:itoa=1\nuse itoa::Buffer;\n```\n")

    Orchestrator(verify_config, runner=fake).run([GUIDE])
    with pytest.raises(ToolchainError):
        Orchestrator(verify_config, runner=fake).run([with_deps])


def test_malformed_host_manifest_is_fatal(
    tmp_path: Path, verify_config: VerifyConfig, fake_toolchain: FakeToolchain
) -> None:
    host = tmp_path / "host"
    host.mkdir()
    (host / "Cargo.toml").write_text("[package\n", encoding="utf-8")
    config = dataclasses.replace(verify_config, manifest_dir=host)

    with pytest.raises(ConfigError):
        Orchestrator(config, runner=fake_toolchain).run([GUIDE])

    assert fake_toolchain.compiles == []


def test_annotations_are_returned_when_enabled(
    verify_config: VerifyConfig, fake_toolchain: FakeToolchain
) -> None:
    config = dataclasses.replace(verify_config, annotate=True)
    failing = Document(path="f.md", text="```rust,compile_fail\nlet x = 1;\n```\n")

    outcome = Orchestrator(config, runner=fake_toolchain).run([failing, GUIDE])

    annotated, untouched = outcome.documents
    assert (
        "<!-- docverify:failed:f_line_1 expected compile error, got successful compile -->"
        in annotated.text
    )
    assert untouched is GUIDE


def test_same_name_documents_do_not_collide(orchestrator: Orchestrator) -> None:
    first = Document(path="a/readme.md", text="```rust\nlet a = 1;\n```\n")
    second = Document(path="b/readme.md", text="```rust\nlet b = undefined_value;\n```\n")

    outcome = orchestrator.run([first, second])

    verdicts = {result.fragment.id: result.verdict for result in outcome.report.results}
    assert isinstance(verdicts["a/readme.md#0"], FailedCompile)
    assert isinstance(verdicts["b/readme.md#0"], FailedCompile)
    assert verdicts["b/readme.md#0"].line == 2
    assert verdicts["a/readme.md#0"].line is None


def test_results_are_deterministic(verify_config: VerifyConfig) -> None:
    first = Orchestrator(verify_config, runner=FakeToolchain(), use_cache=False).run([GUIDE])
    second = Orchestrator(verify_config, runner=FakeToolchain(), use_cache=False).run([GUIDE])

    assert first.verdicts == second.verdicts


def test_shared_breakage_never_masks_an_isolated_expected_failure(
    orchestrator: Orchestrator, fake_toolchain: FakeToolchain
) -> None:
    document = markdown(
        "mixed.md",
        """
        ```rust
        let fine = 1;
        ```

        ```rust
        let broken = undefined_value;
        ```

        ```rust,compile_fail
        let expected = undefined_value;
        ```
        """,
    )

    verdicts = _verdicts(orchestrator.run([document]))

    assert isinstance(verdicts[1], FailedCompile)
    assert isinstance(verdicts[5], FailedCompile)
    assert verdicts[5].line == 6
    assert verdicts[9] == Passed()
    assert len(fake_toolchain.compiles) == 2


def test_compile_fail_sees_errors_from_a_full_compile(orchestrator: Orchestrator) -> None:
    document = Document(
        path="mono.md",
        text=f"```rust,compile_fail\nlet x = {MONO_ERROR};\n```\n",
    )

    assert _verdicts(orchestrator.run([document]))[1] == Passed()


def test_entry_exiting_with_status_zero_passes(orchestrator: Orchestrator) -> None:
    document = markdown(
        "exit.md",
        """
        ```rust
        println!("done");
        std::process::exit(0);
        ```

        ```rust,should_panic
        std::process::exit(0);
        ```
        """,
    )

    verdicts = _verdicts(orchestrator.run([document]))

    assert verdicts[1] == Passed()
    assert isinstance(verdicts[6], MismatchedExpectation)
    assert verdicts[6].actual == "normal exit"


def test_exported_macros_with_the_same_name_do_not_collide(
    orchestrator: Orchestrator, fake_toolchain: FakeToolchain
) -> None:
    document = markdown(
        "macros.md",
        """
        ```rust
        #[macro_export]
        macro_rules! square { ($x:expr) => { $x * $x }; }
        ```

        ```rust
        #[macro_export]
        macro_rules! square { ($x:expr) => { $x * $x }; }
        ```

        ```rust
        let plain = 1;
        ```
        """,
    )

    outcome = orchestrator.run([document])

    assert set(_verdicts(outcome).values()) == {Passed()}
    assert len(fake_toolchain.compiles) == 3


def test_cargo_change_invalidates_only_dependent_fragments(
    verify_config: VerifyConfig, fake_toolchain: FakeToolchain
) -> None:
    document = markdown(
        "cargo.md",
        """
        ```rust,dep:itoa=1
        use itoa::Buffer;
        ```

        ```rust
        let plain = 1;
        ```
        """,
    )
    Orchestrator(verify_config, runner=fake_toolchain).run([document])
    upgraded = FakeToolchain(cargo_version="cargo 1.81.0 (fake)")

    outcome = Orchestrator(verify_config, runner=upgraded).run([document])

    verdicts = _verdicts(outcome)
    assert verdicts[1] == Passed()
    assert verdicts[5] == Skipped(cached=True)
    assert len(upgraded.preludes) == 1
    assert len(upgraded.compiles) == 1
