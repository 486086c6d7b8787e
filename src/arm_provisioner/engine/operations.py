"""Apply operations.

Terraform runs apply by executing a graph of operations (resource nodes + other
nodes). This module implements a minimal version of that idea: each operation
knows how to apply itself and lists dependencies on other operations. State is
committed through the store after every provider call that changed something,
so a failure half-way through a replace still leaves an accurate record.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, Protocol, TypeVar

from arm_provisioner.core.state import ResourceInstance, compute_attributes_hash
from arm_provisioner.engine.errors import EngineError, UnresolvedValueError
from arm_provisioner.resources.expressions import contains_unknown, resolve

if TYPE_CHECKING:
    from collections.abc import Callable

    from arm_provisioner.engine.executor import StateStore
    from arm_provisioner.engine.handlers import EngineContext, Observed
    from arm_provisioner.engine.registry import ResourceTypeRegistry
    from arm_provisioner.engine.types import ResourceChange
    from arm_provisioner.resources.base import Resource

T = TypeVar("T")


class Invoke(Protocol):
    """Runs a single provider-facing call (with retry)."""

    def __call__(self, address: str, fn: Callable[[], T]) -> T: ...


class Operation(Protocol):
    key: str
    deps: list[str]
    change: ResourceChange | None

    def run(
        self,
        *,
        ctx: EngineContext,
        store: StateStore,
        registry: ResourceTypeRegistry,
        invoke: Invoke,
    ) -> None:
        """Execute this operation, committing state through *store*."""


@dataclass
class BarrierOperation:
    """A no-op node used to enforce ordering between operation phases."""

    key: str
    deps: list[str] = field(default_factory=list)
    change: ResourceChange | None = None

    def run(
        self,
        *,
        ctx: EngineContext,
        store: StateStore,
        registry: ResourceTypeRegistry,
        invoke: Invoke,
    ) -> None:
        _ = ctx, store, registry, invoke


def _desired_object(
    change: ResourceChange,
    reg: Any,
    ctx: EngineContext,
    store: StateStore,
    *,
    action: str,
) -> Resource:
    """Re-resolve the declaration against the live state and rebuild the model."""
    if change.desired is None:
        raise ValueError(f"Missing desired config for {action}: {change.address}")

    resolved = resolve(change.desired, store.document, ctx.scope)
    if contains_unknown(resolved):
        raise UnresolvedValueError(change.address)

    desired_obj: Resource = reg.model.model_validate(resolved)
    if desired_obj.address != change.address:
        raise ValueError(
            f"Desired address mismatch for {action}: {change.address} != {desired_obj.address}"
        )
    return desired_obj


def _record(
    change: ResourceChange,
    desired: Resource,
    observed: Observed,
    *,
    created_at: datetime | None = None,
) -> ResourceInstance:
    now = datetime.now(UTC)
    return ResourceInstance(
        address=change.address,
        resource_type=change.resource_type,
        arm_type=desired.arm_type,
        api_version=desired.api_version,
        name=desired.name,
        mode=desired.mode,
        parent=desired.parent_address,
        resource_id=observed.resource_id,
        attributes=observed.attributes,
        attributes_hash=compute_attributes_hash(observed.attributes),
        document=observed.document,
        etag=observed.etag,
        dependencies=list(desired.depends_on),
        created_at=created_at or now,
        updated_at=now,
    )


def _prior(store: StateStore, address: str) -> ResourceInstance:
    prior = store.get(address)
    if prior is None:
        raise EngineError(f"Missing state for {address}")
    return prior


@dataclass
class CreateOperation:
    key: str
    change: ResourceChange | None
    deps: list[str] = field(default_factory=list)

    def run(
        self,
        *,
        ctx: EngineContext,
        store: StateStore,
        registry: ResourceTypeRegistry,
        invoke: Invoke,
    ) -> None:
        assert self.change is not None
        reg = registry.get(self.change.resource_type)
        desired = _desired_object(self.change, reg, ctx, store, action="create")
        observed = invoke(self.key, lambda: reg.handler.create(ctx, desired))
        store.put(_record(self.change, desired, observed))


@dataclass
class UpdateOperation:
    key: str
    change: ResourceChange | None
    deps: list[str] = field(default_factory=list)

    def run(
        self,
        *,
        ctx: EngineContext,
        store: StateStore,
        registry: ResourceTypeRegistry,
        invoke: Invoke,
    ) -> None:
        assert self.change is not None
        reg = registry.get(self.change.resource_type)
        desired = _desired_object(self.change, reg, ctx, store, action="update")
        prior = _prior(store, self.key)
        observed = invoke(self.key, lambda: reg.handler.update(ctx, desired, prior))
        store.put(_record(self.change, desired, observed, created_at=prior.created_at))


@dataclass
class ReplaceOperation:
    """Delete then create. Both halves are committed separately."""

    key: str
    change: ResourceChange | None
    deps: list[str] = field(default_factory=list)

    def run(
        self,
        *,
        ctx: EngineContext,
        store: StateStore,
        registry: ResourceTypeRegistry,
        invoke: Invoke,
    ) -> None:
        assert self.change is not None
        reg = registry.get(self.change.resource_type)
        desired = _desired_object(self.change, reg, ctx, store, action="replace")
        prior = store.get(self.key)
        if prior is not None:
            invoke(self.key, lambda: reg.handler.delete(ctx, prior))
            store.remove(self.key)
        observed = invoke(self.key, lambda: reg.handler.create(ctx, desired))
        store.put(_record(self.change, desired, observed))


@dataclass
class ReadOperation:
    """Look up an existing resource and record it."""

    key: str
    change: ResourceChange | None
    deps: list[str] = field(default_factory=list)

    def run(
        self,
        *,
        ctx: EngineContext,
        store: StateStore,
        registry: ResourceTypeRegistry,
        invoke: Invoke,
    ) -> None:
        assert self.change is not None
        reg = registry.get(self.change.resource_type)
        desired = _desired_object(self.change, reg, ctx, store, action="read")
        observed = invoke(self.key, lambda: reg.handler.lookup(ctx, desired))
        store.put(_record(self.change, desired, observed))


@dataclass
class DeleteOperation:
    key: str
    change: ResourceChange | None
    deps: list[str] = field(default_factory=list)

    def run(
        self,
        *,
        ctx: EngineContext,
        store: StateStore,
        registry: ResourceTypeRegistry,
        invoke: Invoke,
    ) -> None:
        assert self.change is not None
        reg = registry.get(self.change.resource_type)
        prior = _prior(store, self.key)
        invoke(self.key, lambda: reg.handler.delete(ctx, prior))
        store.remove(self.key)


@dataclass
class ForgetOperation:
    """Drop an existing-resource entry from state. No provider call."""

    key: str
    change: ResourceChange | None
    deps: list[str] = field(default_factory=list)

    def run(
        self,
        *,
        ctx: EngineContext,
        store: StateStore,
        registry: ResourceTypeRegistry,
        invoke: Invoke,
    ) -> None:
        _ = ctx, registry, invoke
        store.remove(self.key)
