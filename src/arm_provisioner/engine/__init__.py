"""Plan and apply engine for ARM templates."""

from arm_provisioner.engine.engine import ProgressCallback, ProvisioningEngine
from arm_provisioner.engine.errors import (
    ApplyCanceled,
    ApplyError,
    DependencyCycleError,
    DuplicateAddressError,
    EngineError,
    ExistingResourceNotFoundError,
    StalePlanError,
    StateLockError,
    StateMismatchError,
    UnknownReferenceError,
    UnknownResourceTypeError,
    UnresolvedValueError,
    ValidationError,
)
from arm_provisioner.engine.graph import ResourceGraph, build_graph
from arm_provisioner.engine.handlers import EngineContext, Observed, ResourceHandler
from arm_provisioner.engine.registry import ResourceTypeRegistration, ResourceTypeRegistry
from arm_provisioner.engine.types import (
    Action,
    ApplyResult,
    ExecutionConfig,
    NodeResult,
    NodeStatus,
    Plan,
    PlanMetadata,
    ResourceChange,
    RetryConfig,
)

__all__ = [
    "Action",
    "ApplyCanceled",
    "ApplyError",
    "ApplyResult",
    "DependencyCycleError",
    "DuplicateAddressError",
    "EngineContext",
    "EngineError",
    "ExecutionConfig",
    "ExistingResourceNotFoundError",
    "NodeResult",
    "NodeStatus",
    "Observed",
    "Plan",
    "PlanMetadata",
    "ProgressCallback",
    "ProvisioningEngine",
    "ResourceChange",
    "ResourceGraph",
    "ResourceHandler",
    "ResourceTypeRegistration",
    "ResourceTypeRegistry",
    "RetryConfig",
    "StalePlanError",
    "StateLockError",
    "StateMismatchError",
    "UnknownReferenceError",
    "UnknownResourceTypeError",
    "UnresolvedValueError",
    "ValidationError",
    "build_graph",
]
