"""Template declaration models."""

from arm_provisioner.resources.authorization import RoleAssignmentResource
from arm_provisioner.resources.base import Resource, TrackedResource
from arm_provisioner.resources.cognitive import CognitiveAccountResource, ModelDeploymentResource
from arm_provisioner.resources.existing import ExistingResource
from arm_provisioner.resources.generic import GenericResource
from arm_provisioner.resources.insights import DiagnosticSettingResource

__all__ = [
    "CognitiveAccountResource",
    "DiagnosticSettingResource",
    "ExistingResource",
    "GenericResource",
    "ModelDeploymentResource",
    "Resource",
    "RoleAssignmentResource",
    "TrackedResource",
]
