"""Plan and apply output rendering (Terraform-style)."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any, NamedTuple

import typer

from arm_provisioner.engine.types import Action

if TYPE_CHECKING:
    from collections.abc import Callable

    from arm_provisioner.engine.graph import ResourceGraph
    from arm_provisioner.engine.types import Plan, ResourceChange


class _ActionStyle(NamedTuple):
    color: str
    symbol: str
    progress_verb: str
    done_verb: str


_ACTION_STYLES: dict[str, _ActionStyle] = {
    "create": _ActionStyle("green", "+", "Creating", "Creation complete"),
    "update": _ActionStyle("yellow", "~", "Updating", "Update complete"),
    "replace": _ActionStyle("magenta", "-/+", "Replacing", "Replacement complete"),
    "delete": _ActionStyle("red", "-", "Destroying", "Destroy complete"),
    "read": _ActionStyle("cyan", "<=", "Reading", "Read complete"),
    "forget": _ActionStyle("bright_black", "-", "Forgetting", "Removed from state"),
    "no-op": _ActionStyle("bright_black", " ", "", ""),
}

_ACTION_DESC: dict[str, str] = {
    "create": "will be created",
    "update": "will be updated in-place",
    "replace": "must be replaced",
    "delete": "will be destroyed",
    "read": "will be read",
    "forget": "will be removed from state (not destroyed)",
    "no-op": "is up-to-date",
}

# Keys that add nothing to a rendered block.
_HIDDEN_KEYS = frozenset({"name", "depends_on"})


def styler(color: bool) -> Callable[..., str]:
    """Return ``typer.style`` when *color* is True, otherwise a passthrough."""
    if color:
        return typer.style
    return lambda text, **_kw: text


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def has_actionable_changes(plan: Plan) -> bool:
    """Return True if the plan contains any non-NOOP changes."""
    return any(c.action != Action.NOOP for c in plan.changes)


def _align_values(items: dict[str, Any]) -> list[tuple[str, Any]]:
    """Right-pad keys so ``=`` signs align."""
    if not items:
        return []
    max_key = max(len(k) for k in items)
    return [(k.ljust(max_key), v) for k, v in items.items()]


def _format_value(value: Any) -> str:
    """Format a value for display in a plan diff block."""
    if isinstance(value, str):
        if value == "(known after apply)":
            return value
        return f'"{value}"'
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, dict | list):
        return json.dumps(value, sort_keys=True)
    return str(value)


# ---------------------------------------------------------------------------
# Plan rendering
# ---------------------------------------------------------------------------


def _change_attrs(change: ResourceChange) -> dict[str, str]:
    """Extract displayable ``key → formatted value`` pairs from a change."""
    if change.action in (Action.CREATE, Action.READ) and change.planned:
        return {
            k: _format_value(v) for k, v in change.planned.items() if k not in _HIDDEN_KEYS
        }
    if change.action in (Action.UPDATE, Action.REPLACE) and change.diff:
        forced = set(change.replace_fields or ())
        attrs: dict[str, str] = {}
        for k, d in change.diff.items():
            line = f"{_format_value(d['from'])} -> {_format_value(d['to'])}"
            if k in forced or any(f.startswith(f"{k}.") for f in forced):
                line += " # forces replacement"
            attrs[k] = line
        return attrs
    return {}


def format_change(change: ResourceChange, *, color: bool = True) -> str:
    """Render a single ResourceChange as a Terraform-style block."""
    style = styler(color)
    action_val = change.action.value
    sc = {"fg": _ACTION_STYLES[action_val].color}
    symbol = _ACTION_STYLES[action_val].symbol
    kind = "existing" if change.mode == "existing" else "resource"

    header = f"  # {change.address} {_ACTION_DESC[action_val]}"
    if change.action == Action.REPLACE and change.replace_fields == ["parent"]:
        header += " (parent is replaced)"
    lines = [
        style(header, bold=True, **sc),
        style(f'  {symbol} {kind} "{change.resource_type}" "{change.address}" {{', **sc),
        *[
            style(f"      {symbol} {k} = {v}", **sc)
            for k, v in _align_values(_change_attrs(change))
        ],
        style("    }", **sc),
    ]
    return "\n".join(lines)


def format_changes(changes: list[ResourceChange], *, color: bool = True) -> str:
    """Render a list of changes as Terraform-style diff blocks."""
    blocks = [format_change(c, color=color) for c in changes if c.action != Action.NOOP]
    if not blocks:
        return "No changes. Resources are up-to-date."
    return "\n\n".join(blocks)


def format_outputs(outputs: dict[str, Any], *, color: bool = True) -> str:
    """Render ``name = value`` lines for outputs."""
    style = styler(color)
    if not outputs:
        return ""
    lines = [style("Outputs:", bold=True), ""]
    lines.extend(f"{k} = {_format_value(v)}" for k, v in _align_values(outputs))
    return "\n".join(lines)


def format_plan(plan: Plan, *, color: bool = True) -> str:
    """Render the full plan output with per-change diff blocks."""
    text = format_changes(plan.changes, color=color)
    if plan.outputs and has_actionable_changes(plan):
        names = "\n".join(f"  + {name}" for name in plan.outputs)
        text += f"\n\nChanges to Outputs:\n{names}"
    return text


def format_graph(graph: ResourceGraph, *, dot: bool = False) -> str:
    """Render the dependency graph as DOT, or as an ordered dependency list."""
    if dot:
        return graph.to_dot()
    lines = []
    for i, addr in enumerate(graph.order, start=1):
        resource = graph.resources[addr]
        deps = graph.dependencies[addr]
        suffix = f" <- {', '.join(deps)}" if deps else ""
        marker = " (existing)" if resource.existing else ""
        lines.append(f"{i:>3}. {addr} [{resource.arm_type}]{marker}{suffix}")
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Summaries
# ---------------------------------------------------------------------------

_SUMMARY_ACTIONS = ("create", "update", "replace", "delete")
_PLAN_VERBS = ("to add", "to change", "to replace", "to destroy")
_APPLY_VERBS = ("added", "changed", "replaced", "destroyed")
_SUMMARY_COLORS = ("green", "yellow", "magenta", "red")


def _format_summary(summary: dict[str, int], verbs: tuple[str, ...], *, color: bool) -> str:
    """Build the ``N verb, N verb, ...`` part of a summary line."""
    style = styler(color)
    counts = tuple(summary.get(a, 0) for a in _SUMMARY_ACTIONS)
    parts = [
        style(f"{n} {verb}", fg=fg) if n and color else f"{n} {verb}"
        for n, verb, fg in zip(counts, verbs, _SUMMARY_COLORS, strict=True)
    ]
    return ", ".join(parts)


def changes_summary(changes: list[ResourceChange]) -> dict[str, int]:
    """Count changes by action type."""
    summary: dict[str, int] = {a.value: 0 for a in Action if a != Action.NOOP}
    for c in changes:
        if c.action != Action.NOOP:
            summary[c.action.value] += 1
    return summary


def format_plan_summary(
    summary: dict[str, int], *, color: bool = True, header: str = "Plan"
) -> str:
    """Render ``Plan: 2 to add, 1 to change, 0 to replace, 0 to destroy.``"""
    return f"{header}: {_format_summary(summary, _PLAN_VERBS, color=color)}."


def format_apply_summary(summary: dict[str, int], *, color: bool = True) -> str:
    """Render ``Apply complete! Resources: 2 added, 0 changed, 0 replaced, 0 destroyed.``"""
    style = styler(color)
    head = style("Apply complete!", fg="green", bold=True)
    return f"{head} Resources: {_format_summary(summary, _APPLY_VERBS, color=color)}."
