"""Command line entry point (``arm-provisioner``)."""

from __future__ import annotations

import logging
import os
import sys

import typer

from arm_provisioner import __version__

app = typer.Typer(
    name="arm-provisioner",
    help="Plan and apply Azure Resource Manager templates, Terraform-style.",
    no_args_is_help=True,
    add_completion=False,
)

# Worker threads log too, so the thread name is part of every record.
_LOG_FORMAT = "%(asctime)s %(levelname)s %(threadName)s %(name)s: %(message)s"
_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
_VERBOSITY = {1: logging.INFO, 2: logging.DEBUG}


def _log_level(verbose: int) -> int | None:
    """``ARM_LOG`` wins over ``-v`` flags; ``None`` leaves logging untouched."""
    requested = os.environ.get("ARM_LOG", "").strip().upper()
    if requested:
        if requested in _LEVELS:
            return logging.getLevelName(requested)
        print(
            f"WARNING: invalid ARM_LOG level '{requested}', "
            f"expected one of {', '.join(sorted(_LEVELS))}; defaulting to INFO",
            file=sys.stderr,
        )
        return logging.INFO
    if verbose <= 0:
        return None
    return _VERBOSITY[min(verbose, 2)]


def _configure_logging(verbose: int) -> None:
    level = _log_level(verbose)
    if level is None:
        return
    # Root stays at WARNING so requests/urllib3 don't flood the output.
    logging.basicConfig(level=logging.WARNING, format=_LOG_FORMAT, stream=sys.stderr, force=True)
    logging.getLogger("arm_provisioner").setLevel(level)


def _print_version(value: bool) -> None:
    if value:
        typer.echo(f"arm-provisioner {__version__}")
        raise typer.Exit


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_print_version,
        is_eager=True,
    ),
    verbose: int = typer.Option(
        0,
        "--verbose",
        "-v",
        count=True,
        help="Increase log verbosity (-v info, -vv debug). ARM_LOG overrides it.",
    ),
) -> None:
    _ = version
    _configure_logging(verbose)


# Commands import ``app`` from this module.
from arm_provisioner.cli import commands as _commands  # noqa: E402, F401
