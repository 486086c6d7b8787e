"""Azure Resource Manager resource id helpers.

ARM ids are deterministic paths, e.g.::

    /subscriptions/<sub>/resourceGroups/<rg>/providers/Microsoft.CognitiveServices/
        accounts/<account>/deployments/<deployment>

Extension resources (role assignments, diagnostic settings) hang off another
resource id: ``<scope>/providers/Microsoft.Insights/diagnosticSettings/<name>``.
"""

from __future__ import annotations


def split_type(arm_type: str) -> tuple[str, list[str]]:
    """Split ``Namespace/type1/type2`` into ``("Namespace", ["type1", "type2"])``."""
    namespace, _, rest = arm_type.partition("/")
    if not namespace or not rest:
        raise ValueError(f"Invalid resource type: {arm_type!r}")
    return namespace, rest.split("/")


def resource_group_id(subscription_id: str, resource_group: str) -> str:
    return f"/subscriptions/{subscription_id}/resourceGroups/{resource_group}"


def resource_id(subscription_id: str, resource_group: str, arm_type: str, *names: str) -> str:
    """Build the id of a resource-group scoped resource.

    ``names`` holds one name per type segment (parent names first).
    """
    namespace, segments = split_type(arm_type)
    if len(names) != len(segments):
        raise ValueError(f"{arm_type} needs {len(segments)} name(s), got {len(names)}")
    path = "/".join(f"{seg}/{name}" for seg, name in zip(segments, names, strict=True))
    return f"{resource_group_id(subscription_id, resource_group)}/providers/{namespace}/{path}"


def subscription_resource_id(subscription_id: str, arm_type: str, name: str) -> str:
    """Build the id of a subscription-level resource (e.g. a role definition)."""
    namespace, segments = split_type(arm_type)
    return f"/subscriptions/{subscription_id}/providers/{namespace}/{'/'.join(segments)}/{name}"


def child_resource_id(parent_id: str, arm_type: str, name: str) -> str:
    """Build the id of a nested resource from its parent's id."""
    _, segments = split_type(arm_type)
    return f"{parent_id.rstrip('/')}/{segments[-1]}/{name}"


def extension_resource_id(scope: str, arm_type: str, name: str) -> str:
    """Build the id of an extension resource attached to ``scope``."""
    namespace, segments = split_type(arm_type)
    return f"{scope.rstrip('/')}/providers/{namespace}/{'/'.join(segments)}/{name}"


def parse_type(rid: str) -> str:
    """Return the resource type encoded in a resource id."""
    _, sep, tail = rid.rpartition("/providers/")
    if not sep:
        if "/resourceGroups/" in rid:
            return "Microsoft.Resources/resourceGroups"
        return "Microsoft.Resources/subscriptions"
    parts = tail.strip("/").split("/")
    namespace, rest = parts[0], parts[1:]
    return "/".join([namespace, *rest[0::2]])


def parse_name(rid: str) -> str:
    """Return the last name segment of a resource id."""
    return rid.rstrip("/").rsplit("/", 1)[-1]


def parent_id(rid: str) -> str | None:
    """Return the id of the parent resource for nested ids, else ``None``."""
    _, sep, tail = rid.rpartition("/providers/")
    if not sep:
        return None
    parts = tail.strip("/").split("/")
    if len(parts) <= 3:
        return None
    return rid.rstrip("/").rsplit("/", 2)[0]
