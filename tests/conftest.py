"""
Pytest configuration and fixtures for demo-provisioner tests.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, Dict, Generator, List, Optional

import pytest
import yaml

from demo_provisioner.config import ProvisionConfig
from demo_provisioner.context import RunContext
from demo_provisioner.guard import ConfirmationGate
from demo_provisioner.logging_utils import reset_logging
from demo_provisioner.models import OnExists, Presence, ProvisioningStep


# ============================================================================
# Environment Fixtures
# ============================================================================


@pytest.fixture(autouse=True)
def isolated_logging() -> Generator[None, None, None]:
    """Drop handlers installed by configure_logging() between tests."""
    yield
    reset_logging()


@pytest.fixture
def raw_recipe(tmp_path: Path) -> Dict[str, Any]:
    """Minimal recipe with no environment, rooted in tmp_path."""
    return {
        "name": "demo",
        "target_dir": str(tmp_path / "app"),
        "state_dir": str(tmp_path / "state"),
        "runtime": {"manager": "none"},
    }


@pytest.fixture
def make_config(raw_recipe: Dict[str, Any], tmp_path: Path) -> Callable[..., ProvisionConfig]:
    def _make(**overrides: Any) -> ProvisionConfig:
        raw = dict(raw_recipe)
        raw.update(overrides)
        return ProvisionConfig(raw=raw, base_dir=tmp_path)

    return _make


@pytest.fixture
def ctx(make_config: Callable[..., ProvisionConfig]) -> RunContext:
    return RunContext.from_config(make_config())


@pytest.fixture
def write_recipe(tmp_path: Path, raw_recipe: Dict[str, Any]) -> Callable[..., Path]:
    def _write(name: str = "recipe.yaml", **overrides: Any) -> Path:
        raw = dict(raw_recipe)
        raw.update(overrides)
        p = tmp_path / name
        p.write_text(yaml.safe_dump(raw), encoding="utf-8")
        return p

    return _write


# ============================================================================
# Step Fixtures
# ============================================================================


@pytest.fixture
def yes_gate() -> ConfirmationGate:
    return ConfirmationGate(assume_yes=True, interactive=False)


@pytest.fixture
def no_gate() -> ConfirmationGate:
    return ConfirmationGate(assume_yes=False, interactive=False)


class Recorder:
    """Collects the order in which step callables fire."""

    def __init__(self) -> None:
        self.calls: List[str] = []

    def step(
        self,
        name: str,
        *,
        mandatory: bool = True,
        presence: Presence = Presence.ABSENT,
        fail: bool = False,
        on_exists: OnExists = OnExists.REUSE,
        fingerprint: Optional[str] = None,
    ) -> ProvisioningStep:
        def action(ctx: RunContext) -> str:
            self.calls.append(f"run:{name}")
            if fail:
                raise RuntimeError(f"{name} exploded")
            return f"{name} ok"

        def teardown(ctx: RunContext) -> None:
            self.calls.append(f"teardown:{name}")

        return ProvisioningStep(
            name=name,
            action=action,
            precondition_fn=lambda ctx: presence,
            teardown_fn=teardown,
            mandatory=mandatory,
            on_exists=on_exists,
            fingerprint_value=fingerprint,
        )


@pytest.fixture
def recorder() -> Recorder:
    return Recorder()
