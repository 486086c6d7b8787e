"""CLI command implementations."""

from __future__ import annotations

import json
import os
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Annotated, Literal, TypeVar

import typer

from arm_provisioner.cli import app
from arm_provisioner.cli.errors import handle_error

if TYPE_CHECKING:
    from collections.abc import Callable

    from arm_provisioner.config.schema import Config
    from arm_provisioner.engine.types import ApplyResult, Plan

T = TypeVar("T")

DEFAULT_CONFIG = Path("arm-provisioner.yaml")


class GraphFormat(str, Enum):
    LIST = "list"
    DOT = "dot"


ConfigPath = Annotated[
    Path,
    typer.Option("--config", "-c", help="Path to the configuration file."),
]
NoColor = Annotated[bool, typer.Option("--no-color", help="Disable colored output.")]
AutoApprove = Annotated[bool, typer.Option("--auto-approve", help="Skip interactive approval.")]
NoRefresh = Annotated[
    bool,
    typer.Option("--no-refresh", help="Skip reading live resources before planning."),
]


def _use_color(no_color: bool) -> bool:
    return not (no_color or os.environ.get("NO_COLOR"))


def _guarded(color: bool, fn: Callable[[], T]) -> T:
    """Run *fn*, turning any failure into a clean message and exit code 1."""
    try:
        return fn()
    except typer.Exit:
        raise
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc


def _load(config: Path, color: bool) -> Config:
    from arm_provisioner.config import load

    return _guarded(color, lambda: load(config))


def _confirm(question: str, canceled: str) -> None:
    try:
        typer.confirm(question, abort=True)
    except typer.Abort as e:
        typer.echo(canceled, err=True)
        raise typer.Exit(1) from e


def _run_apply(plan_obj: Plan, cfg: Config, *, color: bool) -> ApplyResult:
    """Apply with a Rich progress bar; one status line per finished resource."""
    from rich.console import Console
    from rich.progress import (
        BarColumn,
        MofNCompleteColumn,
        Progress,
        SpinnerColumn,
        TextColumn,
        TimeElapsedColumn,
    )

    from arm_provisioner.cli.formatting import _ACTION_STYLES
    from arm_provisioner.config import apply
    from arm_provisioner.engine.types import Action, ResourceChange

    console = Console(no_color=not color, highlight=False)
    total = sum(1 for c in plan_obj.changes if c.action != Action.NOOP)
    running: set[str] = set()

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        MofNCompleteColumn(),
        TimeElapsedColumn(),
        console=console,
    ) as progress:
        task = progress.add_task("Applying", total=total)

        def on_progress(change: ResourceChange, event: Literal["start", "done"]) -> None:
            verbs = _ACTION_STYLES[change.action.value]
            if event == "start":
                running.add(change.address)
            else:
                running.discard(change.address)
                progress.console.print(f"  {change.address}: {verbs.done_verb}")
                progress.advance(task)
            busy = ", ".join(sorted(running)) or "waiting"
            progress.update(task, description=f"{verbs.progress_verb} {busy}")

        return _guarded(color, lambda: apply(plan_obj, cfg, progress=on_progress))


def _show_plan(plan_obj: Plan, *, color: bool) -> None:
    from arm_provisioner.cli.formatting import format_plan, format_plan_summary

    typer.echo(format_plan(plan_obj, color=color))
    typer.echo()
    typer.echo(format_plan_summary(plan_obj.summary(), color=color))


def _execute(
    plan_obj: Plan,
    cfg: Config,
    *,
    color: bool,
    auto_approve: bool,
    question: str,
    nothing_to_do: str,
) -> None:
    """Show the plan, ask for approval, apply it and report the outcome."""
    from arm_provisioner.cli.formatting import (
        format_apply_summary,
        format_outputs,
        has_actionable_changes,
    )

    if not has_actionable_changes(plan_obj):
        typer.echo(nothing_to_do)
        raise typer.Exit(0)

    _show_plan(plan_obj, color=color)
    typer.echo()
    if not auto_approve:
        _confirm(question, "Apply canceled.")

    result = _run_apply(plan_obj, cfg, color=color)
    typer.echo()
    typer.echo(format_apply_summary(result.summary(), color=color))
    if result.outputs:
        typer.echo()
        typer.echo(format_outputs(result.outputs, color=color))


@app.command()
def plan(
    config: ConfigPath = DEFAULT_CONFIG,
    out: Annotated[
        Path | None,
        typer.Option("--out", "-o", help="Save plan to file."),
    ] = None,
    destroy: Annotated[
        bool,
        typer.Option("--destroy", help="Plan the removal of every tracked resource."),
    ] = False,
    no_color: NoColor = False,
    no_refresh: NoRefresh = False,
) -> None:
    """Show changes required by the current configuration.

    Exits with code 2 when the plan contains changes.
    """
    from arm_provisioner.cli.formatting import has_actionable_changes
    from arm_provisioner.config import plan as plan_fn

    color = _use_color(no_color)
    cfg = _load(config, color)
    plan_obj = _guarded(color, lambda: plan_fn(cfg, destroy=destroy, refresh=not no_refresh))

    _show_plan(plan_obj, color=color)
    if out is not None:
        plan_obj.save(out)
        typer.echo(f"\nPlan saved to {out}")

    if has_actionable_changes(plan_obj):
        raise typer.Exit(2)


@app.command(name="apply")
def apply_cmd(
    plan_file: Annotated[
        Path | None,
        typer.Argument(help="Saved plan file to apply."),
    ] = None,
    config: ConfigPath = DEFAULT_CONFIG,
    auto_approve: AutoApprove = False,
    no_color: NoColor = False,
    no_refresh: NoRefresh = False,
) -> None:
    """Apply the changes required by the current configuration."""
    from arm_provisioner.config import plan as plan_fn
    from arm_provisioner.engine.types import Plan

    color = _use_color(no_color)
    cfg = _load(config, color)
    if plan_file is not None:
        plan_obj = _guarded(color, lambda: Plan.load(plan_file))
    else:
        plan_obj = _guarded(color, lambda: plan_fn(cfg, refresh=not no_refresh))

    _execute(
        plan_obj,
        cfg,
        color=color,
        auto_approve=auto_approve,
        question="Do you want to apply these changes?",
        nothing_to_do="No changes. Resources are up-to-date.",
    )


@app.command()
def destroy(
    config: ConfigPath = DEFAULT_CONFIG,
    auto_approve: AutoApprove = False,
    no_color: NoColor = False,
) -> None:
    """Destroy all managed resources (existing resources are only forgotten)."""
    from arm_provisioner.config import plan as plan_fn

    color = _use_color(no_color)
    cfg = _load(config, color)
    plan_obj = _guarded(color, lambda: plan_fn(cfg, destroy=True))

    _execute(
        plan_obj,
        cfg,
        color=color,
        auto_approve=auto_approve,
        question="Do you really want to destroy all resources?",
        nothing_to_do="No resources to destroy.",
    )


@app.command(name="refresh")
def refresh_cmd(
    config: ConfigPath = DEFAULT_CONFIG,
    auto_approve: AutoApprove = False,
    no_color: NoColor = False,
) -> None:
    """Read every tracked resource back from Azure and update the state file."""
    from arm_provisioner.cli.formatting import changes_summary, format_changes, format_plan_summary
    from arm_provisioner.config import refresh as refresh_fn
    from arm_provisioner.config import save_state

    color = _use_color(no_color)
    cfg = _load(config, color)
    changes, state = _guarded(color, lambda: refresh_fn(cfg))

    if not changes:
        typer.echo("No changes. State is up-to-date with Azure.")
        raise typer.Exit(0)

    typer.echo(format_changes(changes, color=color))
    typer.echo()
    typer.echo(format_plan_summary(changes_summary(changes), color=color, header="Refresh"))
    typer.echo()
    if not auto_approve:
        _confirm("Do you want to update the state file?", "Refresh canceled.")

    _guarded(color, lambda: save_state(cfg, state))
    count = len(state.resources)
    typer.echo(f"State refreshed. {count} resource{'s' if count != 1 else ''} tracked.")


@app.command()
def drift(
    config: ConfigPath = DEFAULT_CONFIG,
    no_color: NoColor = False,
) -> None:
    """Show drift between the state file and Azure without changing either."""
    from arm_provisioner.cli.formatting import format_changes
    from arm_provisioner.config import drift as drift_fn

    color = _use_color(no_color)
    cfg = _load(config, color)
    changes = _guarded(color, lambda: drift_fn(cfg))

    if not changes:
        typer.echo("No drift detected. State is up-to-date with Azure.")
        raise typer.Exit(0)

    typer.echo("Drift detected:\n")
    typer.echo(format_changes(changes, color=color))


@app.command()
def validate(
    config: ConfigPath = DEFAULT_CONFIG,
    no_color: NoColor = False,
) -> None:
    """Validate the configuration file without calling Azure."""
    from arm_provisioner.cli.formatting import styler
    from arm_provisioner.config import validate as validate_fn

    color = _use_color(no_color)
    cfg = _load(config, color)
    _guarded(color, lambda: validate_fn(cfg))
    typer.echo(styler(color)("Configuration is valid.", fg="green"))


@app.command()
def graph(
    config: ConfigPath = DEFAULT_CONFIG,
    fmt: Annotated[
        GraphFormat,
        typer.Option("--format", "-f", help="Output format."),
    ] = GraphFormat.LIST,
    no_color: NoColor = False,
) -> None:
    """Print the dependency graph in apply order."""
    from arm_provisioner.cli.formatting import format_graph
    from arm_provisioner.config import graph as graph_fn

    color = _use_color(no_color)
    cfg = _load(config, color)
    resource_graph = _guarded(color, lambda: graph_fn(cfg))
    typer.echo(format_graph(resource_graph, dot=fmt == GraphFormat.DOT))


@app.command()
def output(
    config: ConfigPath = DEFAULT_CONFIG,
    as_json: Annotated[bool, typer.Option("--json", help="Print outputs as JSON.")] = False,
    no_color: NoColor = False,
) -> None:
    """Show the outputs recorded by the last apply."""
    from arm_provisioner.cli.formatting import format_outputs
    from arm_provisioner.config import outputs as outputs_fn

    color = _use_color(no_color)
    cfg = _load(config, color)
    values = _guarded(color, lambda: outputs_fn(cfg))

    if as_json:
        typer.echo(json.dumps(values, indent=2, sort_keys=True))
    elif values:
        typer.echo(format_outputs(values, color=color))
    else:
        typer.echo("No outputs recorded.")
