from __future__ import annotations

from pathlib import Path

import pytest

from docverify.config import VerifyConfig, config_from_mapping
from docverify.orchestrator import Orchestrator
from tests._fixtures.fake_toolchain import FakeToolchain


@pytest.fixture
def fake_toolchain() -> FakeToolchain:
    """Provide a scripted toolchain runner."""
    return FakeToolchain()


@pytest.fixture
def verify_config(tmp_path: Path) -> VerifyConfig:
    """Default configuration rooted at the pytest tmp_path."""
    return config_from_mapping({"jobs": 2, "rustc": "rustc", "cargo": "cargo"}, tmp_path)


@pytest.fixture
def orchestrator(verify_config: VerifyConfig, fake_toolchain: FakeToolchain) -> Orchestrator:
    return Orchestrator(verify_config, runner=fake_toolchain)
