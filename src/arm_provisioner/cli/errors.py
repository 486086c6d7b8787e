"""Map exceptions to clean stderr messages and exit codes."""

from __future__ import annotations

from typing import TYPE_CHECKING

import typer

if TYPE_CHECKING:
    from arm_provisioner.engine.types import ApplyResult

_STATUS_LABELS = (
    ("applied", "Applied"),
    ("failed", "Failed"),
    ("skipped", "Skipped (dependency failed)"),
    ("not_attempted", "Not attempted"),
)


def _err(msg: str, *, fg: str | None) -> None:
    """Print a styled message to stderr."""
    typer.echo(typer.style(msg, fg=fg), err=True)


def _report_nodes(result: ApplyResult, *, fg: str | None) -> None:
    from arm_provisioner.engine.types import NodeStatus

    for status, label in _STATUS_LABELS:
        nodes = [n for n in result.nodes if n.status == NodeStatus(status)]
        if not nodes:
            continue
        _err(f"  {label}:", fg=fg)
        for n in nodes:
            detail = f" [{n.error_kind}] {n.message}" if n.message else ""
            _err(f"    - {n.address} ({n.action.value}){detail}", fg=fg)


def handle_error(exc: Exception, *, color: bool = True) -> int:
    """Print a clean error message to stderr and return an exit code.

    All errors map to exit code 1.  No tracebacks are printed.
    """
    from arm_provisioner.config.loader import ConfigError
    from arm_provisioner.core.errors import ProviderError
    from arm_provisioner.engine.errors import (
        ApplyCanceled,
        ApplyError,
        DependencyCycleError,
        StalePlanError,
        StateLockError,
        StateMismatchError,
        UnknownReferenceError,
        ValidationError,
    )

    fg = typer.colors.RED if color else None

    if isinstance(exc, ConfigError):
        _err(f"Configuration error: {exc}", fg=fg)
    elif isinstance(exc, ValidationError):
        _err("Validation failed:", fg=fg)
        for e in exc.errors:
            _err(f"  - {e}", fg=fg)
    elif isinstance(exc, DependencyCycleError | UnknownReferenceError):
        _err(f"Invalid template: {exc}", fg=fg)
    elif isinstance(exc, StalePlanError):
        _err(f"Plan is stale: {exc}", fg=fg)
    elif isinstance(exc, StateMismatchError):
        _err(f"State mismatch: {exc}", fg=fg)
    elif isinstance(exc, StateLockError):
        _err(f"State lock error: {exc}", fg=fg)
    elif isinstance(exc, ApplyError):
        _err(f"Apply failed: {exc}", fg=fg)
        _report_nodes(exc.result, fg=fg)
    elif isinstance(exc, ApplyCanceled):
        _err("Apply canceled.", fg=fg)
    elif isinstance(exc, ProviderError):
        _err(f"Provider error ({exc.kind}): {exc}", fg=fg)
    else:
        _err(f"Error: {exc}", fg=fg)

    return 1
