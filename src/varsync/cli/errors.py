"""Map exceptions to clean stderr messages and exit codes."""

from __future__ import annotations

import typer


def _err(msg: str, *, fg: str | None) -> None:
    """Print a styled message to stderr."""
    typer.echo(typer.style(msg, fg=fg), err=True)


def handle_error(exc: Exception, *, color: bool = True) -> int:
    """Print a clean error message to stderr and return an exit code.

    All errors map to exit code 1. No tracebacks are printed.
    """
    from varsync.config.loader import ConfigError
    from varsync.errors import (
        ApplyError,
        ConflictError,
        GovernanceError,
        ProtectedEnvironmentError,
        RemoteUnavailable,
        StateLockError,
        ValidationError,
        VersionNotFound,
    )

    fg = typer.colors.RED if color else None

    if isinstance(exc, ConfigError):
        _err(f"Configuration error: {exc}", fg=fg)
    elif isinstance(exc, ValidationError):
        _err("Validation failed:", fg=fg)
        for e in exc.errors:
            _err(f"  - {e}", fg=fg)
    elif isinstance(exc, ConflictError):
        _err(f"Plan blocked: {len(exc.keys)} conflicting key(s):", fg=fg)
        for key in exc.keys:
            _err(f"  ! {key}", fg=fg)
        _err("  Re-run with --strategy local-wins or --strategy remote-wins.", fg=fg)
    elif isinstance(exc, GovernanceError):
        _err(f"Plan blocked: {len(exc.issues)} governance issue(s):", fg=fg)
        for issue in exc.issues:
            _err(f"  ! {issue}", fg=fg)
    elif isinstance(exc, ProtectedEnvironmentError):
        _err(f"Refusing to apply: {exc}", fg=fg)
    elif isinstance(exc, VersionNotFound):
        _err(f"Rollback failed: {exc}", fg=fg)
    elif isinstance(exc, RemoteUnavailable):
        _err(str(exc), fg=fg)
    elif isinstance(exc, StateLockError):
        _err(f"Lock error: {exc}", fg=fg)
    elif isinstance(exc, ApplyError):
        _err(f"Apply failed: {exc}", fg=fg)
        s = exc.result.summary()
        parts = [
            f"{n} {verb}"
            for n, verb in (
                (s["succeeded"], "applied"),
                (s["compensated"], "reverted"),
            )
            if n
        ]
        if parts:
            _err(f"  Partial result: {', '.join(parts)}.", fg=fg)
    else:
        _err(f"Error: {exc}", fg=fg)

    return 1
