"""Reference expressions inside declarations.

Declarations point at each other with ``${…}`` expressions:

- ``${account}``: the resource id of declaration ``account``
- ``${account.properties.endpoint}``: a path into its observed document
- ``${guid(account.id, 'reader')}``: deterministic GUID from the arguments
- ``${resourceId('Microsoft.OperationalInsights/workspaces', 'logs')}``:
  id of a resource in the provider's resource group

A string that is exactly one expression resolves to the raw value (which may
be a dict or a number); expressions embedded in longer strings are
interpolated. Values that cannot be known until dependencies are applied
resolve to :data:`UNKNOWN`.
"""

from __future__ import annotations

import re
import uuid
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from arm_provisioner.core.ids import resource_id

UNKNOWN = "(known after apply)"

# Namespace used by ARM's guid() template function.
ARM_GUID_NAMESPACE = uuid.UUID("11fb06fb-712d-4ddd-98c7-e71bbd588830")

_EXPR = re.compile(r"\$\{([^}]*)\}")
_CALL = re.compile(r"^(?P<func>[A-Za-z_]\w*)\((?P<args>.*)\)$", re.DOTALL)
_PATH = re.compile(r"^[A-Za-z][A-Za-z0-9_]*(\.[A-Za-z0-9_-]+)*$")
_FUNCTIONS = frozenset({"guid", "resourceId"})

Lookup = Callable[[str], Mapping[str, Any] | None]


class ExpressionError(ValueError):
    """Raised for malformed ``${…}`` expressions."""


@dataclass(frozen=True, slots=True)
class Scope:
    """Deployment scope used by ``resourceId()``."""

    subscription_id: str
    resource_group: str


@dataclass(frozen=True, slots=True)
class _Literal:
    value: str


@dataclass(frozen=True, slots=True)
class _Path:
    name: str
    path: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class _Call:
    func: str
    args: tuple[_Literal | _Path, ...]


def _split_args(text: str) -> list[str]:
    """Split on commas that are not inside quotes."""
    args: list[str] = []
    current: list[str] = []
    quote: str | None = None
    for ch in text:
        if quote:
            current.append(ch)
            if ch == quote:
                quote = None
        elif ch in "'\"":
            quote = ch
            current.append(ch)
        elif ch == ",":
            args.append("".join(current).strip())
            current = []
        else:
            current.append(ch)
    if quote:
        raise ExpressionError(f"Unterminated string in arguments: {text!r}")
    tail = "".join(current).strip()
    if tail or args:
        args.append(tail)
    return args


def _parse_term(text: str) -> _Literal | _Path:
    text = text.strip()
    if len(text) >= 2 and text[0] == text[-1] and text[0] in "'\"":
        return _Literal(text[1:-1])
    if _PATH.match(text):
        name, *path = text.split(".")
        return _Path(name, tuple(path))
    raise ExpressionError(f"Invalid reference: {text!r}")


def _parse(expr: str) -> _Path | _Call:
    expr = expr.strip()
    call = _CALL.match(expr)
    if call is None:
        term = _parse_term(expr)
        if isinstance(term, _Literal):
            raise ExpressionError(f"Expression must reference a declaration: ${{{expr}}}")
        return term

    func = call.group("func")
    if func not in _FUNCTIONS:
        raise ExpressionError(f"Unknown function {func!r} in ${{{expr}}}")
    args = tuple(_parse_term(a) for a in _split_args(call.group("args")))
    if not args:
        raise ExpressionError(f"{func}() needs at least one argument")
    return _Call(func, args)


def _walk(value: Any, fn: Callable[[str], Any]) -> Any:
    if isinstance(value, str):
        return fn(value)
    if isinstance(value, dict):
        return {k: _walk(v, fn) for k, v in value.items()}
    if isinstance(value, list):
        return [_walk(v, fn) for v in value]
    return value


def references(value: Any) -> list[str]:
    """Names of declarations referenced anywhere in *value*, in first-seen order."""
    found: dict[str, None] = {}

    def _collect(text: str) -> str:
        for match in _EXPR.finditer(text):
            node = _parse(match.group(1))
            terms = node.args if isinstance(node, _Call) else (node,)
            for term in terms:
                if isinstance(term, _Path):
                    found.setdefault(term.name, None)
        return text

    _walk(value, _collect)
    return list(found)


def deterministic_guid(*parts: str) -> str:
    """Stable GUID derived from *parts* (same inputs always give the same GUID)."""
    return str(uuid.uuid5(ARM_GUID_NAMESPACE, "-".join(parts)))


def _lookup_path(lookup: Lookup, term: _Path) -> Any:
    doc = lookup(term.name)
    if doc is None:
        return UNKNOWN
    current: Any = doc
    for segment in term.path or ("id",):
        if not isinstance(current, dict) or segment not in current:
            return UNKNOWN
        current = current[segment]
    return current


def _evaluate(node: _Path | _Call, lookup: Lookup, scope: Scope | None) -> Any:
    if isinstance(node, _Path):
        return _lookup_path(lookup, node)

    args = [a.value if isinstance(a, _Literal) else _lookup_path(lookup, a) for a in node.args]
    if any(a == UNKNOWN for a in args):
        return UNKNOWN
    str_args = [str(a) for a in args]
    if node.func == "guid":
        return deterministic_guid(*str_args)
    # resourceId(type, name, ...)
    if scope is None:
        raise ExpressionError("resourceId() needs a deployment scope")
    if len(str_args) < 2:
        raise ExpressionError("resourceId() needs a type and at least one name")
    return resource_id(scope.subscription_id, scope.resource_group, str_args[0], *str_args[1:])


def _resolve_string(text: str, lookup: Lookup, scope: Scope | None) -> Any:
    whole = _EXPR.fullmatch(text)
    if whole is not None:
        return _evaluate(_parse(whole.group(1)), lookup, scope)

    unknown = False

    def _sub(match: re.Match[str]) -> str:
        nonlocal unknown
        value = _evaluate(_parse(match.group(1)), lookup, scope)
        if value == UNKNOWN:
            unknown = True
        return str(value)

    result = _EXPR.sub(_sub, text)
    return UNKNOWN if unknown else result


def resolve(value: Any, lookup: Lookup, scope: Scope | None = None) -> Any:
    """Resolve every ``${…}`` expression in *value*, recursively.

    *lookup* maps a declaration name to its observed document, or ``None``
    when the document is not known yet.
    """
    return _walk(value, lambda text: _resolve_string(text, lookup, scope))


def contains_unknown(value: Any) -> bool:
    """True if *value* (recursively) still holds :data:`UNKNOWN`."""
    if isinstance(value, str):
        return value == UNKNOWN
    if isinstance(value, dict):
        return any(contains_unknown(v) for v in value.values())
    if isinstance(value, list):
        return any(contains_unknown(v) for v in value)
    return False
