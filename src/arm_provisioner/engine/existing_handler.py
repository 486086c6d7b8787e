"""Read-only handler for ``existing`` declarations."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from arm_provisioner.core.ids import parse_type, resource_id, split_type
from arm_provisioner.engine.errors import EngineError, ExistingResourceNotFoundError
from arm_provisioner.engine.handlers import Observed, ResourceHandler
from arm_provisioner.resources.existing import ExistingResource

if TYPE_CHECKING:
    from arm_provisioner.core.state import ResourceInstance
    from arm_provisioner.engine.handlers import EngineContext

logger = logging.getLogger(__name__)


def _declared_attrs(desired: ExistingResource) -> dict[str, Any]:
    return desired.model_dump(exclude_none=True, exclude={"address", "depends_on"})


class ExistingResourceHandler(ResourceHandler[ExistingResource]):
    """Looks resources up; never writes them."""

    def validate(self, ctx: EngineContext, desired: ExistingResource) -> list[str]:
        _ = ctx
        if desired.resource_id is not None:
            if parse_type(desired.resource_id).lower() != desired.arm_type.lower():
                return [
                    f"Existing resource '{desired.address}': resource_id is a "
                    f"{parse_type(desired.resource_id)}, not a {desired.arm_type}"
                ]
            return []
        _, segments = split_type(desired.arm_type)
        if len(segments) > 1:
            return [
                f"Existing resource '{desired.address}': nested type {desired.arm_type} "
                "needs an explicit resource_id"
            ]
        return []

    def resource_id(self, ctx: EngineContext, desired: ExistingResource) -> str:
        if desired.resource_id is not None:
            return desired.resource_id
        return resource_id(
            desired.subscription_id or ctx.subscription_id,
            desired.resource_group or ctx.resource_group,
            desired.arm_type,
            desired.cloud_name,
        )

    def lookup(self, ctx: EngineContext, desired: ExistingResource) -> Observed:
        rid = self.resource_id(ctx, desired)
        logger.info("Looking up %s (%s)", desired.address, rid)
        doc = ctx.provider.get(rid, desired.api_version, timeout=ctx.timeout)
        if doc is None:
            raise ExistingResourceNotFoundError(desired.address, rid)
        return Observed(
            resource_id=doc.get("id") or rid,
            attributes=_declared_attrs(desired),
            document=doc,
            etag=doc.get("etag"),
        )

    def read(self, ctx: EngineContext, prior: ResourceInstance) -> Observed | None:
        doc = ctx.provider.get(prior.resource_id, prior.api_version, timeout=ctx.timeout)
        if doc is None:
            return None
        return Observed(
            resource_id=prior.resource_id,
            attributes=dict(prior.attributes),
            document=doc,
            etag=doc.get("etag"),
        )

    def _read_only(self, address: str) -> EngineError:
        return EngineError(f"Existing resource '{address}' is read-only")

    def create(self, ctx: EngineContext, desired: ExistingResource) -> Observed:
        raise self._read_only(desired.address)

    def update(
        self, ctx: EngineContext, desired: ExistingResource, prior: ResourceInstance
    ) -> Observed:
        raise self._read_only(desired.address)

    def delete(self, ctx: EngineContext, prior: ResourceInstance) -> None:
        raise self._read_only(prior.address)
