"""Role assignment resource model."""

from __future__ import annotations

from typing import Annotated, ClassVar, Literal

from arm_provisioner.resources.base import Resource
from arm_provisioner.resources.markers import ArmParam, Immutable

ROLE_ASSIGNMENT_TYPE = "Microsoft.Authorization/roleAssignments"
ROLE_DEFINITION_TYPE = "Microsoft.Authorization/roleDefinitions"

PrincipalType = Literal["User", "Group", "ServicePrincipal", "ForeignGroup", "Device"]


class RoleAssignmentResource(Resource):
    """Grants a role on ``scope`` to a principal.

    ``scope`` is usually a reference such as ``${account.id}``. When
    ``resource_name`` is omitted the assignment name is a GUID derived from
    scope, principal and role, so re-running the template is idempotent.
    ``role_definition_id`` accepts a full id or a bare role GUID.

    Role assignments cannot be modified; every property change replaces them.
    """

    resource_type: ClassVar[str] = "role_assignment"
    plan_priority: ClassVar[int] = 50

    arm_type: Literal["Microsoft.Authorization/roleAssignments"] = ROLE_ASSIGNMENT_TYPE
    api_version: str = "2022-04-01"

    scope: Annotated[str, Immutable()]
    role_definition_id: Annotated[str, ArmParam("properties.roleDefinitionId"), Immutable()]
    principal_id: Annotated[str, ArmParam("properties.principalId"), Immutable()]
    principal_type: Annotated[
        PrincipalType | None, ArmParam("properties.principalType"), Immutable()
    ] = None
    description: Annotated[str | None, ArmParam("properties.description")] = None
