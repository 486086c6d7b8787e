"""Handler for untyped resources described by a raw body."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from arm_provisioner.engine.arm_handler import ArmResourceHandler
from arm_provisioner.resources.generic import GenericResource

if TYPE_CHECKING:
    from collections.abc import Mapping

    from arm_provisioner.engine.handlers import EngineContext

# Read-only envelope keys the provider adds to every document.
_ENVELOPE_KEYS = frozenset({"id", "name", "type", "etag", "systemData"})


class GenericResourceHandler(ArmResourceHandler[GenericResource]):
    def __init__(self) -> None:
        super().__init__(GenericResource)

    def validate(self, ctx: EngineContext, desired: GenericResource) -> list[str]:
        errors = super().validate(ctx, desired)
        if desired.parent is not None and desired.scope is not None:
            errors.append(f"Resource '{desired.address}': set either parent or scope, not both")
        return errors

    def body(self, ctx: EngineContext, desired: GenericResource) -> dict[str, Any]:
        _ = ctx
        return dict(desired.body)

    def _read_attrs(self, doc: dict[str, Any], declared: Mapping[str, Any]) -> dict[str, Any]:
        attrs = super()._read_attrs(doc, declared)
        attrs["body"] = {k: v for k, v in doc.items() if k not in _ENVELOPE_KEYS}
        return attrs
