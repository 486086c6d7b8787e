"""Untyped resource declarations for provider types without a dedicated model."""

from __future__ import annotations

from typing import Annotated, Any, ClassVar

from pydantic import Field

from arm_provisioner.resources.base import Resource
from arm_provisioner.resources.markers import Compare, Ref


class GenericResource(Resource):
    """Any provider resource, described by its raw request ``body``.

    The body is compared partially: keys the provider adds on its own
    (``provisioningState``, defaults) never show up as changes. Which body
    paths force a replacement is decided by the ``replace_policy`` table.
    """

    resource_type: ClassVar[str] = "generic"

    parent: Annotated[str | None, Ref()] = None
    scope: str | None = None
    body: Annotated[dict[str, Any], Compare("partial")] = Field(default_factory=dict)
