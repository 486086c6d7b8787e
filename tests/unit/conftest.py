"""Shared fixtures for unit tests."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
from fake_arm import RG, SUB, InMemoryProvider

from arm_provisioner.config import load
from arm_provisioner.config.registry import default_registry
from arm_provisioner.engine import ProvisioningEngine
from arm_provisioner.engine.types import ExecutionConfig, RetryConfig

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

    from arm_provisioner.config.schema import Config

_ARM_ENV_VARS = (
    "ARM_SUBSCRIPTION_ID",
    "ARM_RESOURCE_GROUP",
    "ARM_LOCATION",
    "ARM_ENDPOINT",
    "ARM_ACCESS_TOKEN",
    "ARM_VERIFY_SSL",
    "ARM_LOG",
)


@pytest.fixture(autouse=True)
def _clean_arm_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove ARM_* env vars so unit tests don't leak subscription config."""
    for var in _ARM_ENV_VARS:
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def arm() -> InMemoryProvider:
    return InMemoryProvider()


@pytest.fixture
def execution() -> ExecutionConfig:
    """No backoff sleeps in tests."""
    return ExecutionConfig(
        parallelism=4,
        retry=RetryConfig(max_attempts=3, initial_wait_seconds=0, max_wait_seconds=0),
    )


@pytest.fixture
def make_engine(
    tmp_path: Path, arm: InMemoryProvider, execution: ExecutionConfig
) -> Callable[..., ProvisioningEngine]:
    """Factory fixture: engine over the in-memory provider and a tmp state file."""

    def _make(**overrides: object) -> ProvisioningEngine:
        kwargs: dict[str, object] = {
            "provider": arm,
            "template": "ai-services",
            "subscription_id": SUB,
            "resource_group": RG,
            "location": "eastus",
            "state_path": tmp_path / "state.json",
            "registry": default_registry(),
            "execution": execution,
        }
        kwargs.update(overrides)
        return ProvisioningEngine(**kwargs)  # type: ignore[arg-type]

    return _make


@pytest.fixture
def make_config(tmp_path: Path) -> Callable[..., Config]:
    """Factory fixture: write YAML + optional .env, return loaded Config."""

    def _make(yaml_str: str, *, dotenv: str | None = None) -> Config:
        (tmp_path / "config.yaml").write_text(yaml_str)
        if dotenv is not None:
            (tmp_path / ".env").write_text(dotenv)
        return load(tmp_path / "config.yaml")

    return _make
