"""Typer application and the logging bootstrap shared by every command."""

from __future__ import annotations

import logging
import os
import sys

import typer

from varsync import __version__

app = typer.Typer(
    name="varsync",
    help="Plan and apply scoped config/secret variables against a remote store.",
    no_args_is_help=True,
    add_completion=False,
)

local_app = typer.Typer(
    name="local",
    no_args_is_help=True,
    help="Edit the local override files.",
)
app.add_typer(local_app)

LOG_ENV_VAR = "VARSYNC_LOG"
_LOG_FORMAT = "%(levelname)s %(name)s: %(message)s"
_VALID_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
# -v / -vv; more flags stay at DEBUG
_VERBOSITY = {1: logging.INFO, 2: logging.DEBUG}


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"varsync {__version__}")
        raise typer.Exit


def _log_level(verbose: int) -> int | None:
    """Level for the ``varsync`` logger, or None to leave logging untouched.

    ``VARSYNC_LOG`` wins over ``-v`` flags; an unknown name falls back to INFO.
    """
    name = os.environ.get(LOG_ENV_VAR, "").upper()
    if name:
        if name not in _VALID_LEVELS:
            typer.echo(
                f"WARNING: invalid {LOG_ENV_VAR} level '{name}', "
                f"expected one of {', '.join(sorted(_VALID_LEVELS))}; defaulting to INFO",
                err=True,
            )
            return logging.INFO
        return logging.getLevelName(name)
    if verbose <= 0:
        return None
    return _VERBOSITY[min(verbose, 2)]


def _configure_logging(verbose: int) -> None:
    """Route library logs to stderr. Other libraries stay at WARNING."""
    level = _log_level(verbose)
    if level is None:
        return
    logging.basicConfig(
        level=logging.WARNING,
        format=_LOG_FORMAT,
        stream=sys.stderr,
        force=True,
    )
    logging.getLogger("varsync").setLevel(level)


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
    verbose: int = typer.Option(
        0,
        "--verbose",
        "-v",
        count=True,
        help=f"Increase log verbosity (-v info, -vv debug); {LOG_ENV_VAR} overrides.",
    ),
) -> None:
    """Plan and apply scoped config/secret variables against a remote store."""
    _ = version
    _configure_logging(verbose)


# Commands import ``app``/``local_app`` from this module.
from varsync.cli import commands as _commands  # noqa: E402, F401
