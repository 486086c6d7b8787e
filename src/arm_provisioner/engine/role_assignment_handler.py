"""Role assignment handler."""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Any

from arm_provisioner.core.ids import subscription_resource_id
from arm_provisioner.engine.arm_handler import ArmResourceHandler
from arm_provisioner.resources.authorization import ROLE_DEFINITION_TYPE, RoleAssignmentResource
from arm_provisioner.resources.expressions import UNKNOWN, deterministic_guid

if TYPE_CHECKING:
    from collections.abc import Mapping

    from arm_provisioner.engine.handlers import EngineContext

_GUID = re.compile(r"^[0-9a-fA-F]{8}-([0-9a-fA-F]{4}-){3}[0-9a-fA-F]{12}$")


class RoleAssignmentHandler(ArmResourceHandler[RoleAssignmentResource]):
    """Role assignments are extension resources named by a GUID."""

    def __init__(self) -> None:
        super().__init__(RoleAssignmentResource)

    def validate(self, ctx: EngineContext, desired: RoleAssignmentResource) -> list[str]:
        errors = super().validate(ctx, desired)
        role = desired.role_definition_id
        if "${" not in role and not (_GUID.match(role) or "/roleDefinitions/" in role):
            errors.append(
                f"Resource '{desired.address}': role_definition_id must be a role GUID "
                f"or a role definition id, got '{role}'"
            )
        if desired.resource_name is not None and not _GUID.match(desired.resource_name):
            errors.append(
                f"Resource '{desired.address}': role assignment names must be GUIDs"
            )
        return errors

    def role_definition_id(self, ctx: EngineContext, desired: RoleAssignmentResource) -> str:
        role = desired.role_definition_id
        if _GUID.match(role):
            return subscription_resource_id(ctx.subscription_id, ROLE_DEFINITION_TYPE, role)
        return role

    def cloud_name(self, ctx: EngineContext, desired: RoleAssignmentResource) -> str:
        if desired.resource_name:
            return desired.resource_name
        parts = (desired.scope, desired.principal_id, self.role_definition_id(ctx, desired))
        if UNKNOWN in parts:
            raise ValueError(f"Cannot name role assignment '{desired.address}' yet")
        return deterministic_guid(*parts)

    def body(self, ctx: EngineContext, desired: RoleAssignmentResource) -> dict[str, Any]:
        body = super().body(ctx, desired)
        body["properties"]["roleDefinitionId"] = self.role_definition_id(ctx, desired)
        return body

    def _read_attrs(self, doc: dict[str, Any], declared: Mapping[str, Any]) -> dict[str, Any]:
        attrs = super()._read_attrs(doc, declared)
        # A bare role GUID comes back expanded to the full role definition id.
        role = declared.get("role_definition_id")
        observed = attrs.get("role_definition_id")
        if role and observed and observed.lower().endswith(f"/{role.lower()}"):
            attrs["role_definition_id"] = role
        return attrs
