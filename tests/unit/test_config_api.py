"""Tests for config convenience API and engine wiring."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import pytest
from ai_template import DEPLOYMENT_ID, ENDPOINT, ORDER, seed_workspace
from fake_arm import RG, SUB

from arm_provisioner.config import (
    _engine_from_config,
    apply,
    drift,
    graph,
    outputs,
    plan,
    plan_and_apply,
    refresh,
    save_state,
    validate,
)
from arm_provisioner.config.loader import ConfigError
from arm_provisioner.config.schema import Config, ProviderConfig
from arm_provisioner.core.provider import ArmProvider
from arm_provisioner.core.state import State
from arm_provisioner.engine.errors import UnknownReferenceError, ValidationError
from arm_provisioner.engine.types import Action

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

    from fake_arm import InMemoryProvider

    from arm_provisioner.engine.types import ResourceChange

_YAML = f"""\
provider:
  subscription_id: {SUB}
  resource_group: {RG}
  location: eastus

template: ai-services

resources:
  - name: workspace
    type: Microsoft.OperationalInsights/workspaces@2022-10-01
    existing: true
    resource_name: logs

  - name: account
    type: Microsoft.CognitiveServices/accounts@2023-05-01
    custom_subdomain: ai-demo

  - name: gpt
    type: Microsoft.CognitiveServices/accounts/deployments@2023-05-01
    parent: account
    model_name: gpt-4o
    model_version: "2024-08-06"
    sku_name: GlobalStandard
    capacity: 10

  - name: reader
    type: Microsoft.Authorization/roleAssignments@2022-04-01
    scope: "${{account.id}}"
    role_definition_id: 5e0bd9bd-7b93-4f28-af87-19fc36ad61bd
    principal_id: 6f1c3c4e-1111-4222-8333-944455556666

  - name: diag
    type: Microsoft.Insights/diagnosticSettings@2021-05-01-preview
    scope: "${{account.id}}"
    workspace_id: "${{workspace.id}}"
    metrics:
      - category: AllMetrics

outputs:
  endpoint: "${{account.properties.endpoint}}"
  deployment: "${{gpt.name}}"
"""


@pytest.fixture
def config(make_config: Callable[..., Config], arm: InMemoryProvider) -> Config:
    seed_workspace(arm)
    return make_config(_YAML)


def _provider(**kwargs: object) -> ProviderConfig:
    fields: dict[str, Any] = {"subscription_id": SUB, "resource_group": RG, **kwargs}
    return ProviderConfig(**fields)


class TestEngineFromConfig:
    def test_builds_engine_with_template_and_state_path(self, config: Config) -> None:
        engine = _engine_from_config(config, provider=ArmProvider())
        assert engine.template == "ai-services"
        assert engine.state_path == config.state_path
        assert config.state_path.name == ".arm-state.json"

    def test_missing_access_token_raises(self) -> None:
        config = Config(provider=_provider(), template="t")
        with pytest.raises(ConfigError, match="access_token"):
            _engine_from_config(config)

    def test_token_and_ssl_passed_to_provider(self) -> None:
        config = Config(
            provider=_provider(access_token="tok", verify_ssl=False),
            template="t",
        )
        engine = _engine_from_config(config)
        provider = engine._provider
        assert isinstance(provider, ArmProvider)
        assert provider.verify_ssl is False
        assert provider.auth is not None
        assert provider.auth.access_token.get_secret_value() == "tok"
        assert provider.operation_timeout == config.execution.operation_timeout_seconds

    def test_access_token_from_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("ARM_ACCESS_TOKEN", "from-env")
        config = Config(provider=_provider(), template="t")
        provider = _engine_from_config(config)._provider
        assert isinstance(provider, ArmProvider)
        assert provider.auth is not None
        assert provider.auth.access_token.get_secret_value() == "from-env"


class TestPlanAndApply:
    def test_first_apply(self, config: Config, arm: InMemoryProvider) -> None:
        plan_obj = plan(config, provider=arm)
        assert [c.address for c in plan_obj.changes] == ORDER
        assert plan_obj.changes[0].action == Action.READ
        assert plan_obj.outputs == config.outputs

        result = apply(plan_obj, config, provider=arm)

        assert len(result.applied) == 5
        assert result.outputs == {"endpoint": ENDPOINT, "deployment": "gpt"}
        assert arm.doc(DEPLOYMENT_ID) is not None

    def test_plan_and_apply_then_noop(self, config: Config, arm: InMemoryProvider) -> None:
        plan_and_apply(config, provider=arm)

        again = plan(config, provider=arm)
        assert {c.action for c in again.changes} == {Action.NOOP}

    def test_destroy(self, config: Config, arm: InMemoryProvider) -> None:
        plan_and_apply(config, provider=arm)

        result = plan_and_apply(config, destroy=True, provider=arm)

        assert result.summary()["delete"] == 4
        assert result.summary()["forget"] == 1
        assert State.load(config.state_path).resources == {}

    def test_progress_callback_is_forwarded(
        self, config: Config, arm: InMemoryProvider
    ) -> None:
        seen: list[tuple[str, str]] = []

        def progress(change: ResourceChange, event: str) -> None:
            seen.append((change.address, event))

        apply(plan(config, provider=arm), config, provider=arm, progress=progress)
        assert ("account", "start") in seen
        assert ("diag", "done") in seen


class TestOutputs:
    def test_no_state_file(self, config: Config) -> None:
        assert outputs(config) == {}

    def test_recorded_after_apply(self, config: Config, arm: InMemoryProvider) -> None:
        plan_and_apply(config, provider=arm)
        assert outputs(config) == {"endpoint": ENDPOINT, "deployment": "gpt"}


class TestRefreshAndDrift:
    def test_no_drift(self, config: Config, arm: InMemoryProvider) -> None:
        plan_and_apply(config, provider=arm)
        assert drift(config, provider=arm) == []

    def test_drift_detected_without_saving(self, config: Config, arm: InMemoryProvider) -> None:
        plan_and_apply(config, provider=arm)
        doc = arm.doc(DEPLOYMENT_ID)
        assert doc is not None
        doc["sku"]["capacity"] = 40

        changes = drift(config, provider=arm)

        assert [(c.address, c.action) for c in changes] == [("gpt", Action.UPDATE)]
        saved = State.load(config.state_path)
        assert saved.resources["gpt"].attributes["capacity"] == 10

    def test_save_state_bumps_serial(self, config: Config, arm: InMemoryProvider) -> None:
        plan_and_apply(config, provider=arm)
        serial = State.load(config.state_path).serial
        doc = arm.doc(DEPLOYMENT_ID)
        assert doc is not None
        doc["sku"]["capacity"] = 40

        changes, state = refresh(config, provider=arm)
        save_state(config, state)

        assert len(changes) == 1
        saved = State.load(config.state_path)
        assert saved.serial == serial + 1
        assert saved.resources["gpt"].attributes["capacity"] == 40
        assert {c.action for c in plan(config, provider=arm).changes} == {
            Action.NOOP,
            Action.UPDATE,
        }


class TestValidateAndGraph:
    def test_validate_is_offline(self, config: Config) -> None:
        # No access token configured: validate never builds an authenticated session.
        plan_obj = validate(config)
        assert [c.address for c in plan_obj.changes] == ORDER
        assert plan_obj.metadata.refresh is False

    def test_validate_reports_unknown_reference(
        self, make_config: Callable[..., Config]
    ) -> None:
        config = make_config(_YAML.replace("${account.id}", "${acount.id}", 1))
        with pytest.raises(UnknownReferenceError, match="acount"):
            validate(config)

    def test_validate_reports_bad_output(self, make_config: Callable[..., Config]) -> None:
        config = make_config(_YAML + "  broken: \"${lookup(account)}\"\n")
        with pytest.raises(ValidationError, match="broken"):
            validate(config)

    def test_graph(self, config: Config) -> None:
        resource_graph = graph(config)
        assert resource_graph.order == ORDER
        assert resource_graph.dependencies["diag"] == ["account", "workspace"]
        assert resource_graph.children["account"] == ["gpt"]

    def test_state_path_relative_to_config_dir(
        self, config: Config, tmp_path: Path
    ) -> None:
        assert config.state_path == tmp_path / ".arm-state.json"
