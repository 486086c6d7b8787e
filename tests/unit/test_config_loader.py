"""Tests for YAML configuration loading and resource type discrimination."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
from fake_arm import RG, SUB

from arm_provisioner.config.loader import (
    ConfigError,
    _resolve_provider,
    _validate_unique_names,
    load_config,
)
from arm_provisioner.resources import (
    CognitiveAccountResource,
    DiagnosticSettingResource,
    ExistingResource,
    GenericResource,
    ModelDeploymentResource,
    RoleAssignmentResource,
)

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

    from arm_provisioner.config.schema import Config

_PROVIDER = f"""\
provider:
  subscription_id: {SUB}
  resource_group: {RG}
"""

_FULL_YAML = (
    _PROVIDER
    + """\
  location: eastus

template: ai-services
state_path: state/ai.json

execution:
  parallelism: 2
  retry:
    max_attempts: 2

replace_policy:
  Microsoft.Storage/storageAccounts: [body.kind]

resources:
  - name: workspace
    type: Microsoft.OperationalInsights/workspaces@2022-10-01
    existing: true
    resource_name: logs

  - name: account
    type: Microsoft.CognitiveServices/accounts@2024-10-01
    custom_subdomain: ai-demo
    tags:
      team: ml

  - name: gpt
    type: Microsoft.CognitiveServices/accounts/deployments@2024-10-01
    parent: account
    model_name: gpt-4o
    model_version: "2024-08-06"
    capacity: 10

  - name: reader
    type: Microsoft.Authorization/roleAssignments@2022-04-01
    scope: "${account.id}"
    role_definition_id: 5e0bd9bd-7b93-4f28-af87-19fc36ad61bd
    principal_id: 6f1c3c4e-1111-4222-8333-944455556666
    principal_type: ServicePrincipal

  - name: diag
    type: Microsoft.Insights/diagnosticSettings@2021-05-01-preview
    scope: "${account.id}"
    workspace_id: "${workspace.id}"
    logs:
      - categoryGroup: audit

  - name: storage
    type: Microsoft.Storage/storageAccounts@2023-01-01
    body:
      location: eastus
      kind: StorageV2
      sku:
        name: Standard_LRS

outputs:
  endpoint: "${account.properties.endpoint}"
"""
)


def _minimal(resources: str = "") -> str:
    return _PROVIDER + "template: t\n" + (f"resources:\n{resources}" if resources else "")


@pytest.fixture
def full_config(make_config: Callable[..., Config]) -> Config:
    return make_config(_FULL_YAML)


class TestLoadConfigFull:
    def test_top_level_sections(self, full_config: Config, tmp_path: Path) -> None:
        assert full_config.template == "ai-services"
        assert full_config.provider.subscription_id == SUB
        assert full_config.provider.resource_group == RG
        assert full_config.execution.parallelism == 2
        assert full_config.execution.retry.max_attempts == 2
        assert full_config.replace_policy == {"Microsoft.Storage/storageAccounts": ["body.kind"]}
        assert full_config.outputs == {"endpoint": "${account.properties.endpoint}"}
        assert full_config.config_dir == tmp_path

    def test_state_path_is_relative_to_config_dir(
        self, full_config: Config, tmp_path: Path
    ) -> None:
        assert full_config.state_path == tmp_path / "state" / "ai.json"

    def test_default_state_path(self, make_config: Callable[..., Config], tmp_path: Path) -> None:
        config = make_config(_minimal())
        assert config.state_path == tmp_path / ".arm-state.json"
        assert config.resources == []

    def test_absolute_state_path_kept(
        self, make_config: Callable[..., Config], tmp_path: Path
    ) -> None:
        target = tmp_path / "elsewhere" / "state.json"
        config = make_config(_minimal() + f"state_path: {target}\n")
        assert config.state_path == target


class TestTypeDiscrimination:
    def test_model_per_type(self, full_config: Config) -> None:
        kinds = {r.name: type(r) for r in full_config.resources}
        assert kinds == {
            "workspace": ExistingResource,
            "account": CognitiveAccountResource,
            "gpt": ModelDeploymentResource,
            "reader": RoleAssignmentResource,
            "diag": DiagnosticSettingResource,
            "storage": GenericResource,
        }

    def test_type_splits_into_arm_type_and_api_version(self, full_config: Config) -> None:
        gpt = next(r for r in full_config.resources if r.name == "gpt")
        assert gpt.arm_type == "Microsoft.CognitiveServices/accounts/deployments"
        assert gpt.api_version == "2024-10-01"

    def test_typed_fields_parsed(self, full_config: Config) -> None:
        by_name = {r.name: r for r in full_config.resources}
        account = by_name["account"]
        assert isinstance(account, CognitiveAccountResource)
        assert account.tags == {"team": "ml"}
        diag = by_name["diag"]
        assert isinstance(diag, DiagnosticSettingResource)
        assert diag.logs == [{"enabled": True, "categoryGroup": "audit"}]
        storage = by_name["storage"]
        assert isinstance(storage, GenericResource)
        assert storage.body["sku"] == {"name": "Standard_LRS"}

    def test_provider_location_is_default(self, full_config: Config) -> None:
        account = next(r for r in full_config.resources if r.name == "account")
        assert isinstance(account, CognitiveAccountResource)
        assert account.location == "eastus"

    def test_explicit_location_wins(self, make_config: Callable[..., Config]) -> None:
        config = make_config(
            _PROVIDER
            + "  location: eastus\ntemplate: t\nresources:\n"
            + "  - name: account\n"
            + "    type: Microsoft.CognitiveServices/accounts@2023-05-01\n"
            + "    location: swedencentral\n"
        )
        account = config.resources[0]
        assert isinstance(account, CognitiveAccountResource)
        assert account.location == "swedencentral"

    def test_existing_false_is_a_managed_resource(
        self, make_config: Callable[..., Config]
    ) -> None:
        config = make_config(
            _minimal(
                "  - name: account\n"
                "    type: Microsoft.CognitiveServices/accounts@2023-05-01\n"
                "    existing: false\n"
            )
        )
        assert isinstance(config.resources[0], CognitiveAccountResource)

    def test_existing_by_resource_id(self, make_config: Callable[..., Config]) -> None:
        rid = f"/subscriptions/{SUB}/resourceGroups/shared/providers/Microsoft.KeyVault/vaults/kv"
        config = make_config(
            _minimal(
                "  - name: vault\n"
                "    type: Microsoft.KeyVault/vaults@2023-07-01\n"
                "    existing: true\n"
                f"    resource_id: {rid}\n"
            )
        )
        vault = config.resources[0]
        assert isinstance(vault, ExistingResource)
        assert vault.resource_id == rid
        assert vault.existing


class TestConfigErrors:
    def test_missing_type(self, make_config: Callable[..., Config]) -> None:
        with pytest.raises(ConfigError, match="need a 'type"):
            make_config(_minimal("  - name: account\n"))

    def test_unknown_field_rejected(self, make_config: Callable[..., Config]) -> None:
        with pytest.raises(ConfigError, match="Extra inputs are not permitted"):
            make_config(
                _minimal(
                    "  - name: account\n"
                    "    type: Microsoft.CognitiveServices/accounts@2023-05-01\n"
                    "    colour: blue\n"
                )
            )

    def test_field_validation_propagates(self, make_config: Callable[..., Config]) -> None:
        with pytest.raises(ConfigError, match="capacity"):
            make_config(
                _minimal(
                    "  - name: gpt\n"
                    "    type: Microsoft.CognitiveServices/accounts/deployments@2023-05-01\n"
                    "    parent: account\n"
                    "    model_name: gpt-4o\n"
                    "    capacity: 0\n"
                )
            )

    def test_missing_template(self, make_config: Callable[..., Config]) -> None:
        with pytest.raises(ConfigError, match="template"):
            make_config(_PROVIDER)

    def test_non_mapping_yaml(self, make_config: Callable[..., Config]) -> None:
        with pytest.raises(ConfigError, match="does not contain a YAML mapping"):
            make_config("- item1\n- item2\n")

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError, match="Failed to read"):
            load_config(tmp_path / "nonexistent.yaml")

    def test_duplicate_names(self, make_config: Callable[..., Config]) -> None:
        entry = "  - name: account\n    type: Microsoft.CognitiveServices/accounts@2023-05-01\n"
        with pytest.raises(ConfigError, match="Duplicate resource name 'account'"):
            make_config(_minimal(entry + entry))

    def test_two_declarations_for_one_resource(self, make_config: Callable[..., Config]) -> None:
        with pytest.raises(ConfigError, match="both manage"):
            make_config(
                _minimal(
                    "  - name: a\n"
                    "    type: Microsoft.CognitiveServices/accounts@2023-05-01\n"
                    "    resource_name: shared\n"
                    "  - name: b\n"
                    "    type: Microsoft.CognitiveServices/accounts@2023-05-01\n"
                    "    resource_name: Shared\n"
                )
            )


class TestValidateUniqueNames:
    def test_existing_declarations_may_alias(self) -> None:
        resources = [
            ExistingResource(
                name=name,
                arm_type="Microsoft.KeyVault/vaults",
                api_version="2023-07-01",
                resource_name="kv",
            )
            for name in ("a", "b")
        ]
        assert _validate_unique_names(resources) == []

    def test_generated_extension_names_are_not_compared(self) -> None:
        resources = [
            RoleAssignmentResource(
                name=name,
                scope="${account.id}",
                role_definition_id="5e0bd9bd-7b93-4f28-af87-19fc36ad61bd",
                principal_id=principal,
            )
            for name, principal in (("r1", "p1"), ("r2", "p2"))
        ]
        assert _validate_unique_names(resources) == []

    def test_same_name_under_different_parents(self) -> None:
        resources = [
            ModelDeploymentResource(
                name=name, parent=parent, model_name="gpt-4o", resource_name="gpt"
            )
            for name, parent in (("d1", "east"), ("d2", "west"))
        ]
        assert _validate_unique_names(resources) == []


class TestResolveProvider:
    _BASE = {"subscription_id": SUB, "resource_group": RG}

    def test_yaml_values(self, tmp_path: Path) -> None:
        result = _resolve_provider({**self._BASE, "location": "eastus"}, tmp_path)
        assert result == {**self._BASE, "location": "eastus"}

    def test_env_var_fallback(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("ARM_SUBSCRIPTION_ID", "from-env")
        monkeypatch.setenv("ARM_RESOURCE_GROUP", "rg-env")
        result = _resolve_provider({}, tmp_path)
        assert result["subscription_id"] == "from-env"
        assert result["resource_group"] == "rg-env"

    def test_yaml_value_over_env_var(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("ARM_RESOURCE_GROUP", "rg-env")
        assert _resolve_provider(self._BASE, tmp_path)["resource_group"] == RG

    def test_yaml_null_falls_through_to_env_var(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("ARM_ACCESS_TOKEN", "from-env")
        result = _resolve_provider({**self._BASE, "access_token": None}, tmp_path)
        assert result["access_token"] == "from-env"

    def test_dotenv_file(self, tmp_path: Path) -> None:
        (tmp_path / ".env").write_text("ARM_ACCESS_TOKEN=from-dotenv\n")
        assert _resolve_provider(self._BASE, tmp_path)["access_token"] == "from-dotenv"

    def test_env_var_overrides_dotenv(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        (tmp_path / ".env").write_text("ARM_ACCESS_TOKEN=from-dotenv\n")
        monkeypatch.setenv("ARM_ACCESS_TOKEN", "from-env")
        assert _resolve_provider(self._BASE, tmp_path)["access_token"] == "from-env"

    def test_dotenv_with_bom(self, tmp_path: Path) -> None:
        (tmp_path / ".env").write_bytes(b"\xef\xbb\xbfARM_ACCESS_TOKEN=from-bom\n")
        assert _resolve_provider(self._BASE, tmp_path)["access_token"] == "from-bom"

    def test_verify_ssl_from_env_var(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("ARM_VERIFY_SSL", "false")
        assert _resolve_provider(self._BASE, tmp_path)["verify_ssl"] is False

    def test_invalid_boolean(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("ARM_VERIFY_SSL", "nope")
        with pytest.raises(ConfigError, match="Invalid boolean for ARM_VERIFY_SSL"):
            _resolve_provider(self._BASE, tmp_path)

    def test_missing_required_settings(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError, match="ARM_SUBSCRIPTION_ID, ARM_RESOURCE_GROUP"):
            _resolve_provider({}, tmp_path)

    def test_dotenv_next_to_config(self, make_config: Callable[..., Config]) -> None:
        config = make_config(
            "template: t\n",
            dotenv=f"ARM_SUBSCRIPTION_ID={SUB}\nARM_RESOURCE_GROUP={RG}\nARM_ACCESS_TOKEN=tok\n",
        )
        assert config.provider.subscription_id == SUB
        assert config.provider.access_token is not None
        assert config.provider.access_token.get_secret_value() == "tok"
