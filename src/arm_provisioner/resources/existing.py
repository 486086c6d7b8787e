"""Declarations of resources that already exist and are only looked up."""

from __future__ import annotations

from typing import ClassVar

from arm_provisioner.core.state import ResourceMode
from arm_provisioner.resources.base import Resource


class ExistingResource(Resource):
    """A pre-existing resource, read but never written.

    Identified either by an explicit ``resource_id`` or by type + name inside
    ``resource_group`` / ``subscription_id`` (defaulting to the provider's).
    Existing declarations are leaves: they may not reference other
    declarations.
    """

    resource_type: ClassVar[str] = "existing"
    mode: ClassVar[ResourceMode] = "existing"
    plan_priority: ClassVar[int] = 0

    resource_id: str | None = None
    resource_group: str | None = None
    subscription_id: str | None = None
