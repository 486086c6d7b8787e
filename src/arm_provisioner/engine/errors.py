"""Engine error types."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from arm_provisioner.engine.types import ApplyResult


class EngineError(Exception):
    """Base exception for engine errors."""


class UnknownResourceTypeError(EngineError):
    """Raised when a resource type has no registration/handler."""

    def __init__(self, resource_type: str) -> None:
        super().__init__(f"Unknown resource type: {resource_type}")
        self.resource_type = resource_type


class DuplicateAddressError(EngineError):
    """Raised when multiple declarations share the same symbolic name."""

    def __init__(self, address: str) -> None:
        super().__init__(f"Duplicate resource address: {address}")
        self.address = address


class DependencyCycleError(EngineError):
    """Raised when dependencies contain a cycle."""

    def __init__(self, addresses: list[str]) -> None:
        msg = "Dependency cycle detected"
        if addresses:
            msg += f": {' -> '.join([*addresses, addresses[0]])}"
        super().__init__(msg)
        self.addresses = addresses


class UnknownReferenceError(EngineError):
    """Raised when a declaration references a name that is not declared."""

    def __init__(self, address: str, reference: str) -> None:
        super().__init__(f"Resource '{address}' references unknown declaration '{reference}'")
        self.address = address
        self.reference = reference


class UnresolvedValueError(EngineError):
    """Raised at apply time when a reference still cannot be resolved."""

    def __init__(self, address: str) -> None:
        super().__init__(f"Resource '{address}' has references that could not be resolved")
        self.address = address


class ExistingResourceNotFoundError(EngineError):
    """Raised when an ``existing`` declaration points at nothing."""

    def __init__(self, address: str, resource_id: str) -> None:
        super().__init__(f"Existing resource '{address}' not found: {resource_id}")
        self.address = address
        self.resource_id = resource_id


class StateMismatchError(EngineError):
    """Raised when the on-disk state belongs to a different template."""

    def __init__(self, expected: str, got: str) -> None:
        super().__init__(f"State template mismatch: expected {expected}, got {got}")
        self.expected = expected
        self.got = got


class StalePlanError(EngineError):
    """Raised when applying a plan against a different state than planned."""


class StateLockError(EngineError):
    """Raised when the state lock cannot be acquired or released."""


class ValidationError(EngineError):
    """One or more resources failed plan validation."""

    def __init__(self, errors: list[str]) -> None:
        self.errors = errors
        msg = "Validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
        super().__init__(msg)


class ApplyError(EngineError):
    """Raised when an apply fails mid-way through.

    Carries the partial result: which nodes were applied, which failed, and
    which were skipped or never attempted. The first failure is chained via
    ``__cause__``.
    """

    def __init__(self, *, result: ApplyResult, address: str, message: str) -> None:
        self.result = result
        self.address = address
        super().__init__(f"Apply failed on {address}: {message}")


class ApplyCanceled(EngineError):
    """Raised when an apply is canceled (e.g., Ctrl-C)."""
