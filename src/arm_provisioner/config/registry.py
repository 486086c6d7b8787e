"""Default resource type registry factory."""

from __future__ import annotations

from arm_provisioner.engine.arm_handler import ArmResourceHandler
from arm_provisioner.engine.diagnostic_setting_handler import DiagnosticSettingHandler
from arm_provisioner.engine.existing_handler import ExistingResourceHandler
from arm_provisioner.engine.generic_handler import GenericResourceHandler
from arm_provisioner.engine.registry import ResourceTypeRegistry
from arm_provisioner.engine.role_assignment_handler import RoleAssignmentHandler
from arm_provisioner.resources.authorization import RoleAssignmentResource
from arm_provisioner.resources.cognitive import CognitiveAccountResource, ModelDeploymentResource
from arm_provisioner.resources.existing import ExistingResource
from arm_provisioner.resources.generic import GenericResource
from arm_provisioner.resources.insights import DiagnosticSettingResource


def default_registry() -> ResourceTypeRegistry:
    """Create a fresh registry with all built-in resource types and handlers."""
    registry = ResourceTypeRegistry()

    registry.register(ExistingResource, ExistingResourceHandler())
    registry.register(CognitiveAccountResource, ArmResourceHandler(CognitiveAccountResource))
    registry.register(ModelDeploymentResource, ArmResourceHandler(ModelDeploymentResource))
    registry.register(RoleAssignmentResource, RoleAssignmentHandler())
    registry.register(DiagnosticSettingResource, DiagnosticSettingHandler())
    registry.register(GenericResource, GenericResourceHandler())

    return registry
