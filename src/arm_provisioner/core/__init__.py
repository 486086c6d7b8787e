"""Core infrastructure components for arm-provisioner."""

from arm_provisioner.core.errors import (
    ConflictError,
    ProviderError,
    ProviderValidationError,
    TransientError,
)
from arm_provisioner.core.provider import ArmProvider, Provider, TokenAuth
from arm_provisioner.core.state import ResourceInstance, State

__all__ = [
    "ArmProvider",
    "ConflictError",
    "Provider",
    "ProviderError",
    "ProviderValidationError",
    "ResourceInstance",
    "State",
    "TokenAuth",
    "TransientError",
]
