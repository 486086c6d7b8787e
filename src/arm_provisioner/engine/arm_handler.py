"""Generic handler for typed ARM resources."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from arm_provisioner.core.ids import (
    child_resource_id,
    extension_resource_id,
    resource_id,
    split_type,
)
from arm_provisioner.engine.handlers import Observed, R, ResourceHandler
from arm_provisioner.resources.base import IDENTITY_FIELDS, TrackedResource
from arm_provisioner.resources.markers import build_arm_body, extract_arm_attrs

if TYPE_CHECKING:
    from collections.abc import Mapping

    from arm_provisioner.core.state import ResourceInstance
    from arm_provisioner.engine.handlers import EngineContext

logger = logging.getLogger(__name__)


class ArmResourceHandler(ResourceHandler[R]):
    """CRUD handler driven by ``ArmParam`` field markers.

    The request body is built from the declaration's marked fields, and the
    observed attributes are extracted from the provider document through the
    same markers, so a freshly applied resource always diffs as no-op.
    """

    def __init__(self, model: type[R]) -> None:
        self.model = model

    def validate(self, ctx: EngineContext, desired: R) -> list[str]:
        errors = super().validate(ctx, desired)
        _, segments = split_type(desired.arm_type)
        has_parent = desired.parent_address is not None
        label = f"Resource '{desired.address}' ({desired.arm_type})"
        if len(segments) > 1 and not has_parent:
            errors.append(f"{label} needs a parent")
        if len(segments) == 1 and has_parent:
            errors.append(f"{label} cannot have a parent")
        if isinstance(desired, TrackedResource) and desired.location is None and not ctx.location:
            errors.append(f"Resource '{desired.address}' needs a location")
        return errors

    def cloud_name(self, ctx: EngineContext, desired: R) -> str:
        _ = ctx
        return desired.cloud_name

    def resource_id(self, ctx: EngineContext, desired: R) -> str:
        name = self.cloud_name(ctx, desired)
        parent = desired.parent_address
        if parent is not None:
            return child_resource_id(ctx.require(parent).resource_id, desired.arm_type, name)
        scope = getattr(desired, "scope", None)
        if scope:
            return extension_resource_id(scope, desired.arm_type, name)
        return resource_id(ctx.subscription_id, ctx.resource_group, desired.arm_type, name)

    def body(self, ctx: EngineContext, desired: R) -> dict[str, Any]:
        body = build_arm_body(desired)
        if isinstance(desired, TrackedResource) and "location" not in body and ctx.location:
            body["location"] = ctx.location
        return body

    def _read_attrs(
        self, doc: dict[str, Any], declared: Mapping[str, Any]
    ) -> dict[str, Any]:
        """Observed attributes in the same shape as the declaration's dump.

        *declared* holds the values the attributes are later compared with
        (the declaration on create/update, the stored attributes on refresh).
        """
        identity = {k: declared[k] for k in IDENTITY_FIELDS if declared.get(k) is not None}
        return {**identity, **extract_arm_attrs(self.model, doc)}

    def _observe(self, rid: str, doc: dict[str, Any], declared: Mapping[str, Any]) -> Observed:
        return Observed(
            resource_id=doc.get("id") or rid,
            attributes=self._read_attrs(doc, declared),
            document=doc,
            etag=doc.get("etag"),
        )

    def read(self, ctx: EngineContext, prior: ResourceInstance) -> Observed | None:
        doc = ctx.provider.get(prior.resource_id, prior.api_version, timeout=ctx.timeout)
        if doc is None:
            return None
        return self._observe(prior.resource_id, doc, prior.attributes)

    def create(self, ctx: EngineContext, desired: R) -> Observed:
        rid = self.resource_id(ctx, desired)
        logger.info("Creating %s (%s)", desired.address, rid)
        doc = ctx.provider.put(
            rid, desired.api_version, self.body(ctx, desired), timeout=ctx.timeout
        )
        return self._observe(rid, doc, desired.model_dump(exclude_none=True))

    def update(self, ctx: EngineContext, desired: R, prior: ResourceInstance) -> Observed:
        rid = self.resource_id(ctx, desired)
        logger.info("Updating %s (%s)", desired.address, rid)
        doc = ctx.provider.put(
            rid,
            desired.api_version,
            self.body(ctx, desired),
            timeout=ctx.timeout,
            if_match=prior.etag,
        )
        return self._observe(rid, doc, desired.model_dump(exclude_none=True))

    def delete(self, ctx: EngineContext, prior: ResourceInstance) -> None:
        logger.info("Deleting %s (%s)", prior.address, prior.resource_id)
        existed = ctx.provider.delete(prior.resource_id, prior.api_version, timeout=ctx.timeout)
        if not existed:
            logger.debug("%s was already gone", prior.resource_id)
