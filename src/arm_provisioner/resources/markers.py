"""Declarative field markers for resource models.

Four markers attach to Pydantic fields via ``Annotated``:

- ``Ref``: field holds the symbolic name of another declaration
- ``ArmParam``: field maps to a path in the provider's resource document
- ``Compare``: field-level comparison strategy used by the planner
- ``Immutable``: changing the field forces the planner to replace the resource

Helper functions introspect these markers at runtime to automate reference
collection, request body construction, observed-attribute extraction,
per-field comparison strategies and the default replace policy.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Literal, TypeAlias, TypeVar

from pydantic_core import PydanticUndefined

if TYPE_CHECKING:
    from collections.abc import Iterable

    from pydantic.fields import FieldInfo

M = TypeVar("M")
CompareStrategy: TypeAlias = Literal["partial", "exact", "set"]


@dataclass(frozen=True, slots=True)
class ResourceRef:
    """Resolved reference value extracted from a ``Ref``-annotated field."""

    name: str
    field: str
    arm_type: str | None = None


# ── Marker dataclasses ──────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class Ref:
    """Field references another declaration by symbolic name.

    ``arm_type`` is optional; ``None`` means "any resource type".
    """

    arm_type: str | None = None


@dataclass(frozen=True, slots=True)
class ArmParam:
    """Field maps to a path in the resource document.

    ``path`` is dot-separated, e.g. ``"properties.model.name"`` →
    ``doc["properties"]["model"]["name"]``.
    """

    path: str


@dataclass(frozen=True, slots=True)
class Compare:
    """How the planner should compare the field.

    - ``"partial"``: for dict values, only keys declared in desired are compared
    - ``"exact"``: strict equality comparison
    - ``"set"``: order-insensitive list comparison
    """

    strategy: CompareStrategy


@dataclass(frozen=True, slots=True)
class Immutable:
    """The provider cannot change this field in place."""


# ── Shared introspection primitives ─────────────────────────────────


def _find_marker(field_info: FieldInfo, marker_type: type[M]) -> M | None:
    """Return the first marker of *marker_type* on a field, or ``None``."""
    return next((m for m in field_info.metadata if isinstance(m, marker_type)), None)


def _iter_marked_fields(
    model_or_cls: Any,
    marker_type: type[M],
) -> list[tuple[str, FieldInfo, M]]:
    """Return ``(field_name, field_info, marker)`` for every field carrying *marker_type*."""
    cls = model_or_cls if isinstance(model_or_cls, type) else type(model_or_cls)
    return [
        (name, fi, marker)
        for name, fi in cls.model_fields.items()
        if (marker := _find_marker(fi, marker_type)) is not None
    ]


def _resolve_path(raw: dict[str, Any], path: str, default: Any = None) -> Any:
    """Resolve a dot-separated path in a nested dict."""
    current: Any = raw
    for segment in path.split("."):
        if not isinstance(current, dict) or segment not in current:
            return default
        current = current[segment]
    return current


def _assign_path(target: dict[str, Any], path: str, value: Any) -> None:
    """Set a dot-separated path in a nested dict, creating parents as needed."""
    *parents, leaf = path.split(".")
    current = target
    for segment in parents:
        current = current.setdefault(segment, {})
    current[leaf] = value


def _field_default(fi: FieldInfo) -> Any:
    """Model default for a field, or ``None`` for required fields."""
    if fi.default is not PydanticUndefined:
        return fi.default
    if fi.default_factory is not None:
        return fi.default_factory()  # type: ignore[call-arg]
    return None


def _coerce_to_list(value: Any) -> list[str]:
    """Normalize a scalar, list, or ``None`` to a flat list of strings."""
    if value is None:
        return []
    return value if isinstance(value, list) else [value]


# ── Public helpers ──────────────────────────────────────────────────


def collect_ref_specs(resource: Any) -> list[ResourceRef]:
    """Collect typed references from ``Ref``-annotated fields."""
    refs: list[ResourceRef] = []
    for name, _, marker in _iter_marked_fields(resource, Ref):
        refs.extend(
            ResourceRef(name=ref, field=name, arm_type=marker.arm_type)
            for ref in _coerce_to_list(getattr(resource, name))
        )
    return refs


def collect_compare_strategies(resource_or_cls: Any) -> dict[str, CompareStrategy]:
    """Collect per-field compare strategies from ``Compare`` markers."""
    return {
        name: marker.strategy for name, _, marker in _iter_marked_fields(resource_or_cls, Compare)
    }


def collect_immutable_fields(resource_or_cls: Any) -> frozenset[str]:
    """Names of fields carrying the ``Immutable`` marker."""
    return frozenset(name for name, _, _ in _iter_marked_fields(resource_or_cls, Immutable))


def extract_arm_attrs(resource_cls: type, raw: dict[str, Any]) -> dict[str, Any]:
    """Extract model attrs from a provider document via ``ArmParam`` markers."""
    return {
        name: _resolve_path(raw, marker.path, _field_default(fi))
        for name, fi, marker in _iter_marked_fields(resource_cls, ArmParam)
    }


def build_arm_body(resource: Any) -> dict[str, Any]:
    """Build a request body from ``ArmParam`` fields, skipping unset (``None``) values."""
    body: dict[str, Any] = {}
    for name, _, marker in _iter_marked_fields(resource, ArmParam):
        value = getattr(resource, name)
        if value is not None:
            _assign_path(body, marker.path, value)
    return body


def collect_arm_paths(resource_or_cls: Any) -> dict[str, str]:
    """Document path of every ``ArmParam``-annotated field, by field name."""
    return {
        name: marker.path for name, _, marker in _iter_marked_fields(resource_or_cls, ArmParam)
    }


def mask_paths(document: dict[str, Any], paths: Iterable[str], value: Any) -> dict[str, Any]:
    """Deep copy of *document* with every dotted path in *paths* set to *value*."""
    masked = copy.deepcopy(document)
    for path in paths:
        _assign_path(masked, path, value)
    return masked
