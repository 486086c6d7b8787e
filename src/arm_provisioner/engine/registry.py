"""Resource type registry for handler dispatch."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from arm_provisioner.engine.errors import UnknownResourceTypeError

if TYPE_CHECKING:
    from arm_provisioner.engine.handlers import ResourceHandler
    from arm_provisioner.resources.base import Resource


@dataclass(frozen=True)
class ResourceTypeRegistration:
    resource_type: str
    model: type[Resource]
    handler: ResourceHandler[Any]

    @property
    def plan_priority(self) -> int:
        return self.model.plan_priority


class ResourceTypeRegistry:
    """Registry mapping resource_type -> (model, handler)."""

    def __init__(self) -> None:
        self._registrations: dict[str, ResourceTypeRegistration] = {}

    def register(self, model: type[Resource], handler: ResourceHandler[Any]) -> None:
        resource_type = getattr(model, "resource_type", None)
        if not isinstance(resource_type, str) or not resource_type:
            raise ValueError("Resource model must define a non-empty classvar `resource_type`")

        if resource_type in self._registrations:
            raise ValueError(f"Resource type already registered: {resource_type}")

        self._registrations[resource_type] = ResourceTypeRegistration(
            resource_type=resource_type,
            model=model,
            handler=handler,
        )

    def get(self, resource_type: str) -> ResourceTypeRegistration:
        try:
            return self._registrations[resource_type]
        except KeyError as e:
            raise UnknownResourceTypeError(resource_type) from e

    def for_resource(self, resource: Resource) -> ResourceTypeRegistration:
        """Registration for a declaration, checking it is an instance of the model."""
        reg = self.get(resource.resource_type)
        if not isinstance(resource, reg.model):
            raise UnknownResourceTypeError(f"{resource.resource_type} ({type(resource).__name__})")
        return reg

    def __contains__(self, resource_type: object) -> bool:
        return resource_type in self._registrations

    def resource_types(self) -> list[str]:
        return sorted(self._registrations)
