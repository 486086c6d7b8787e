"""Base resource classes for template declarations."""

from typing import Annotated, ClassVar

from pydantic import BaseModel, ConfigDict, Field, computed_field

from arm_provisioner.core.state import ResourceMode
from arm_provisioner.resources.expressions import references
from arm_provisioner.resources.markers import (
    ArmParam,
    Immutable,
    ResourceRef,
    collect_ref_specs,
)

# Fields that identify a declaration rather than describe the remote resource.
IDENTITY_FIELDS: tuple[str, ...] = (
    "name",
    "arm_type",
    "api_version",
    "resource_name",
    "parent",
    "scope",
)


class Resource(BaseModel):
    """Base class for all declarations.

    Resources are pure data - they define the desired state.
    Handlers know how to CRUD resources.
    """

    model_config = ConfigDict(extra="forbid")

    resource_type: ClassVar[str]
    mode: ClassVar[ResourceMode] = "managed"
    plan_priority: ClassVar[int] = 100

    name: str = Field(pattern=r"^[A-Za-z][A-Za-z0-9_]*$")
    arm_type: str = Field(pattern=r"^[A-Za-z0-9.]+(/[A-Za-z0-9]+)+$")
    api_version: str = Field(pattern=r"^\d{4}-\d{2}-\d{2}(-[a-z]+)?$")
    resource_name: str | None = None

    # Lifecycle
    depends_on: list[str] = []

    @property
    def existing(self) -> bool:
        return self.mode == "existing"

    @property
    def cloud_name(self) -> str:
        """Name of the resource on the provider side."""
        return self.resource_name or self.name

    @property
    def parent_address(self) -> str | None:
        """Symbolic name of the owning declaration, for nested resources."""
        return getattr(self, "parent", None)

    def references(self) -> list[ResourceRef]:
        """Typed references declared through ``Ref`` fields."""
        return collect_ref_specs(self)

    def expression_references(self) -> list[str]:
        """Names referenced from ``${…}`` expressions in any field."""
        return references(self.model_dump(exclude={"name", "depends_on", "address"}))

    @computed_field
    @property
    def address(self) -> str:
        """Unique address for this declaration (its symbolic name)."""
        return self.name


class TrackedResource(Resource):
    """A resource-group scoped resource that carries a location and tags."""

    location: Annotated[str | None, ArmParam("location"), Immutable()] = None
    tags: Annotated[dict[str, str], ArmParam("tags")] = Field(default_factory=dict)
