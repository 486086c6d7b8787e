"""Engine-facing handler interfaces."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from arm_provisioner.engine.errors import EngineError
from arm_provisioner.resources.base import Resource
from arm_provisioner.resources.expressions import Scope

if TYPE_CHECKING:
    from collections.abc import Callable

    from arm_provisioner.core.provider import Provider
    from arm_provisioner.core.state import ResourceInstance

R = TypeVar("R", bound=Resource)


def _no_lookup(address: str) -> ResourceInstance | None:
    _ = address
    return None


@dataclass(frozen=True)
class EngineContext:
    """Context passed to handlers.

    ``lookup`` gives read access to the recorded state of other declarations
    (e.g. a parent's resource id).
    """

    provider: Provider
    template: str
    subscription_id: str
    resource_group: str
    location: str | None = None
    timeout: float = 60.0
    lookup: Callable[[str], ResourceInstance | None] = field(default=_no_lookup)

    @property
    def scope(self) -> Scope:
        return Scope(subscription_id=self.subscription_id, resource_group=self.resource_group)

    def require(self, address: str) -> ResourceInstance:
        inst = self.lookup(address)
        if inst is None:
            raise EngineError(f"Resource '{address}' has not been provisioned yet")
        return inst


@dataclass(frozen=True)
class Observed:
    """What a handler saw on the provider side after a call."""

    resource_id: str
    attributes: dict[str, Any]
    document: dict[str, Any]
    etag: str | None = None


class ResourceHandler(Generic[R]):
    """Base class for resource handlers.

    Handlers are responsible for translating declarations into provider calls.
    Subclass and override the CRUD methods. Validation is optional.
    """

    def validate(self, ctx: EngineContext, desired: R) -> list[str]:
        """Single-resource validation. No cross-resource context needed.

        Return list of error messages (empty = valid).
        """
        _ = ctx, desired
        return []

    def resource_id(self, ctx: EngineContext, desired: R) -> str:
        """Provider id the declaration maps to."""
        raise NotImplementedError

    def read(self, ctx: EngineContext, prior: ResourceInstance) -> Observed | None:
        """Read the resource. Return None if it no longer exists."""
        raise NotImplementedError

    def lookup(self, ctx: EngineContext, desired: R) -> Observed:
        """Look up a pre-existing resource without writing anything."""
        raise NotImplementedError

    def create(self, ctx: EngineContext, desired: R) -> Observed:
        """Create the resource. Return what was observed."""
        raise NotImplementedError

    def update(self, ctx: EngineContext, desired: R, prior: ResourceInstance) -> Observed:
        """Update the resource in place. Return what was observed."""
        raise NotImplementedError

    def delete(self, ctx: EngineContext, prior: ResourceInstance) -> None:
        """Delete the resource. Already-deleted resources are not an error."""
        raise NotImplementedError
