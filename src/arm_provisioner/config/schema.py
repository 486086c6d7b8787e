"""Configuration models for YAML templates."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Any

from pydantic import (
    BaseModel,
    BeforeValidator,
    Discriminator,
    Field,
    SecretStr,
    Tag,
    model_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

from arm_provisioner.engine.types import ExecutionConfig
from arm_provisioner.resources.authorization import ROLE_ASSIGNMENT_TYPE, RoleAssignmentResource
from arm_provisioner.resources.base import TrackedResource
from arm_provisioner.resources.cognitive import (
    ACCOUNT_TYPE,
    DEPLOYMENT_TYPE,
    CognitiveAccountResource,
    ModelDeploymentResource,
)
from arm_provisioner.resources.existing import ExistingResource
from arm_provisioner.resources.generic import GenericResource
from arm_provisioner.resources.insights import (
    DIAGNOSTIC_SETTING_TYPE,
    DiagnosticSettingResource,
)


class ProviderConfig(BaseSettings):
    """Azure Resource Manager connection settings.

    Fields can be set via YAML (constructor kwargs) or environment variables
    with the ``ARM_`` prefix.  Constructor kwargs take precedence.

    ``access_token`` is typically provided via the ``ARM_ACCESS_TOKEN``
    environment variable (e.g. from ``az account get-access-token``) rather
    than YAML to avoid committing secrets to version control.
    """

    model_config = SettingsConfigDict(env_prefix="ARM_")

    subscription_id: str
    resource_group: str
    location: str | None = None
    endpoint: str = "https://management.azure.com"
    access_token: SecretStr | None = None
    verify_ssl: bool = True


# Typed models by provider type (lower-cased); anything else is generic.
_TYPED_MODELS: dict[str, str] = {
    ACCOUNT_TYPE.lower(): CognitiveAccountResource.resource_type,
    DEPLOYMENT_TYPE.lower(): ModelDeploymentResource.resource_type,
    ROLE_ASSIGNMENT_TYPE.lower(): RoleAssignmentResource.resource_type,
    DIAGNOSTIC_SETTING_TYPE.lower(): DiagnosticSettingResource.resource_type,
}


def _none_to_list(v: Any) -> Any:
    return v if v is not None else []


def _none_to_dict(v: Any) -> Any:
    return v if v is not None else {}


def _split_type(v: Any) -> Any:
    """Turn ``type: <ArmType>@<apiVersion>`` into ``arm_type`` / ``api_version``."""
    if not isinstance(v, dict):
        return v
    v = dict(v)
    if not v.get("existing", True):
        del v["existing"]
    type_ref = v.pop("type", None)
    if isinstance(type_ref, str):
        arm_type, sep, api_version = type_ref.partition("@")
        v.setdefault("arm_type", arm_type)
        if sep:
            v.setdefault("api_version", api_version)
    return v


def _entry_tag(v: Any) -> str | None:
    if isinstance(v, dict):
        if v.get("existing"):
            return ExistingResource.resource_type
        arm_type = v.get("arm_type")
        if not isinstance(arm_type, str):
            return None
        return _TYPED_MODELS.get(arm_type.lower(), GenericResource.resource_type)
    return getattr(v, "resource_type", None)


def _drop_existing_flag(v: Any) -> Any:
    if isinstance(v, dict) and "existing" in v:
        v = dict(v)
        v.pop("existing")
    return v


_ResourceEntry = Annotated[
    Annotated[CognitiveAccountResource, Tag(CognitiveAccountResource.resource_type)]
    | Annotated[ModelDeploymentResource, Tag(ModelDeploymentResource.resource_type)]
    | Annotated[RoleAssignmentResource, Tag(RoleAssignmentResource.resource_type)]
    | Annotated[DiagnosticSettingResource, Tag(DiagnosticSettingResource.resource_type)]
    | Annotated[
        ExistingResource,
        BeforeValidator(_drop_existing_flag),
        Tag(ExistingResource.resource_type),
    ]
    | Annotated[GenericResource, Tag(GenericResource.resource_type)],
    # Discriminator first: the type split below must run before it.
    Discriminator(
        _entry_tag,
        custom_error_type="invalid_resource",
        custom_error_message="Resource entries need a 'type: <ArmType>@<apiVersion>'",
    ),
    BeforeValidator(_split_type),
]


class Config(BaseModel):
    """Provisioning configuration: validates YAML structure directly."""

    provider: ProviderConfig
    template: str = Field(pattern=r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")
    state_path: Path = Path(".arm-state.json")
    execution: ExecutionConfig = ExecutionConfig()
    replace_policy: Annotated[dict[str, list[str]], BeforeValidator(_none_to_dict)] = {}
    resources: Annotated[list[_ResourceEntry], BeforeValidator(_none_to_list)] = []
    outputs: Annotated[dict[str, Any], BeforeValidator(_none_to_dict)] = {}
    config_dir: Path = Path()

    @model_validator(mode="after")
    def _default_locations(self) -> Config:
        """Tracked resources without a location inherit the provider's."""
        if self.provider.location is not None:
            for r in self.resources:
                if isinstance(r, TrackedResource) and r.location is None:
                    r.location = self.provider.location
        return self
