"""CLI command implementations."""

from __future__ import annotations

import os
from pathlib import Path
from typing import TYPE_CHECKING, Annotated, Literal

import typer

from varsync.cli import app, local_app
from varsync.cli.errors import handle_error
from varsync.config.loader import DEFAULT_CONFIG_FILE
from varsync.engine.types import ConflictStrategy, PlanOperation

if TYPE_CHECKING:
    from collections.abc import Callable

    from varsync.config.schema import Config
    from varsync.core.scope import Scope
    from varsync.engine.batch import BatchOperation, BatchResult
    from varsync.engine.types import ApplyResult, Plan

ConfigPath = Annotated[
    Path,
    typer.Option("--config", "-c", help="Path to the configuration file."),
]

NoColor = Annotated[
    bool,
    typer.Option("--no-color", help="Disable colored output."),
]

AutoApprove = Annotated[
    bool,
    typer.Option("--auto-approve", help="Skip interactive approval."),
]

ScopeOpt = Annotated[
    str,
    typer.Option("--scope", "-s", help="'shared', 'service:<name>' or a service name."),
]

EnvOpt = Annotated[
    str | None,
    typer.Option("--env", "-e", help="Environment (defaults to the configured one)."),
]

OperationOpt = Annotated[
    PlanOperation,
    typer.Option("--operation", "-o", help="merge, push or pull."),
]

StrategyOpt = Annotated[
    ConflictStrategy | None,
    typer.Option("--strategy", help="Conflict resolution for merges."),
]

PruneOpt = Annotated[
    bool | None,
    typer.Option("--prune/--no-prune", help="Delete keys missing from the source side."),
]

ForceOpt = Annotated[
    bool,
    typer.Option("--force", help="Allow writes to protected environments."),
]

DryRunOpt = Annotated[
    bool,
    typer.Option("--dry-run", help="Show what would happen without writing anything."),
]


def _use_color(no_color: bool) -> bool:
    """Determine whether to use color output."""
    return not (no_color or os.environ.get("NO_COLOR"))


def _scope(raw: str) -> Scope:
    from varsync.core.scope import require_scope

    return require_scope(raw)


def _apply_with_progress(
    plan_obj: Plan,
    cfg: Config,
    *,
    color: bool,
    dry_run: bool,
    all_or_nothing: bool,
    force: bool,
) -> ApplyResult:
    """Apply a plan with a Rich progress bar and per-key status lines."""
    from rich.console import Console
    from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn

    from varsync.config import apply

    console = Console(no_color=not color)
    total = plan_obj.changes.remote_write_count + plan_obj.changes.local_write_count

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        console=console,
    ) as progress:
        task = progress.add_task("Applying", total=total)

        def on_progress(key: str, event: Literal["start", "done"]) -> None:
            if event == "start":
                progress.update(task, description=f"{key}: writing...")
            elif event == "done":
                progress.console.print(f"  {key}: done")
                progress.advance(task)

        return apply(
            plan_obj,
            cfg,
            dry_run=dry_run,
            all_or_nothing=all_or_nothing,
            force=force,
            progress=on_progress,
        )


def _show_plan(plan_obj: Plan, cfg: Config, *, color: bool) -> None:
    from varsync.cli.formatting import format_plan, format_plan_summary

    typer.echo(format_plan(plan_obj, color=color, mask=cfg.mask))
    typer.echo()
    typer.echo(format_plan_summary(plan_obj, color=color))


@app.command()
def plan(
    config: ConfigPath = Path(DEFAULT_CONFIG_FILE),
    scope: ScopeOpt = "shared",
    env: EnvOpt = None,
    operation: OperationOpt = PlanOperation.MERGE,
    strategy: StrategyOpt = None,
    prune: PruneOpt = None,
    out: Annotated[
        Path | None,
        typer.Option("--out", help="Save the plan to a file for a later apply."),
    ] = None,
    artifact: Annotated[
        bool,
        typer.Option("--artifact", help="Write a masked JSON + Markdown review artifact."),
    ] = False,
    no_color: NoColor = False,
) -> None:
    """Show the changes between local overrides and the remote store.

    Exits with code 2 when there are changes.
    """
    from varsync.cli.formatting import has_actionable_changes
    from varsync.config import load
    from varsync.config import plan as plan_fn
    from varsync.engine.plan import write_plan_artifact

    color = _use_color(no_color)
    try:
        cfg = load(config)
        plan_obj = plan_fn(
            cfg,
            _scope(scope),
            environment=env,
            operation=operation,
            strategy=strategy,
            prune=prune,
        )
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    _show_plan(plan_obj, cfg, color=color)

    if out is not None:
        plan_obj.save(out)
        typer.echo(f"\nPlan saved to {out}")
    if artifact:
        json_path, md_path = write_plan_artifact(
            plan_obj, cfg.resolve(cfg.artifact_dir), mask=cfg.mask
        )
        typer.echo(f"\nReview artifact: {json_path}, {md_path}")

    if has_actionable_changes(plan_obj):
        raise typer.Exit(2)


@app.command(name="apply")
def apply_cmd(
    plan_file: Annotated[
        Path | None,
        typer.Argument(help="Saved plan file to apply."),
    ] = None,
    config: ConfigPath = Path(DEFAULT_CONFIG_FILE),
    scope: ScopeOpt = "shared",
    env: EnvOpt = None,
    operation: OperationOpt = PlanOperation.MERGE,
    strategy: StrategyOpt = None,
    prune: PruneOpt = None,
    all_or_nothing: Annotated[
        bool,
        typer.Option("--all-or-nothing", help="Revert remote writes if any key fails."),
    ] = False,
    dry_run: DryRunOpt = False,
    force: ForceOpt = False,
    auto_approve: AutoApprove = False,
    no_color: NoColor = False,
) -> None:
    """Apply a saved plan, or plan and apply one scope."""
    from varsync.cli.formatting import format_apply_summary, has_actionable_changes
    from varsync.config import load
    from varsync.config import plan as plan_fn
    from varsync.engine.types import Plan

    color = _use_color(no_color)
    try:
        cfg = load(config)
        if plan_file is not None:
            plan_obj = Plan.load(plan_file)
        else:
            plan_obj = plan_fn(
                cfg,
                _scope(scope),
                environment=env,
                operation=operation,
                strategy=strategy,
                prune=prune,
            )
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    if not has_actionable_changes(plan_obj):
        typer.echo("No changes. Local and remote are in sync.")
        raise typer.Exit(0)

    _show_plan(plan_obj, cfg, color=color)
    typer.echo()

    if not (auto_approve or dry_run):
        try:
            typer.confirm("Do you want to apply these changes?", abort=True)
        except typer.Abort as e:
            typer.echo("Apply canceled.", err=True)
            raise typer.Exit(1) from e

    try:
        result = _apply_with_progress(
            plan_obj,
            cfg,
            color=color,
            dry_run=dry_run,
            all_or_nothing=all_or_nothing,
            force=force,
        )
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    if plan_file is not None and result.plan is not None and not dry_run:
        result.plan.save(plan_file)

    typer.echo()
    typer.echo(format_apply_summary(result, color=color))
    if not result.ok:
        raise typer.Exit(1)


def _run_batch_with_progress(
    run: Callable[..., BatchResult], total: int, *, color: bool
) -> BatchResult:
    from rich.console import Console
    from rich.progress import BarColumn, MofNCompleteColumn, Progress, TextColumn

    console = Console(no_color=not color)
    with Progress(
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        MofNCompleteColumn(),
        console=console,
    ) as progress:
        task = progress.add_task("Services", total=total)

        def on_progress(done: int, _total: int, op: BatchOperation) -> None:
            progress.update(task, completed=done, description=str(op.item))

        return run(on_progress=on_progress)


@app.command()
def batch(
    config: ConfigPath = Path(DEFAULT_CONFIG_FILE),
    env: EnvOpt = None,
    operation: OperationOpt = PlanOperation.MERGE,
    service: Annotated[
        list[str] | None,
        typer.Option("--service", help="Service to include (repeatable; default: all)."),
    ] = None,
    apply_changes: Annotated[
        bool,
        typer.Option("--apply", help="Apply each plan instead of only planning."),
    ] = False,
    force: ForceOpt = False,
    no_color: NoColor = False,
) -> None:
    """Plan (or plan and apply) every service in one batch."""
    from functools import partial

    from varsync.cli.formatting import format_plan
    from varsync.config import apply_services, load, plan_services, service_scopes
    from varsync.engine.batch import BatchStatus, format_batch_result

    color = _use_color(no_color)
    try:
        cfg = load(config)
        total = len(service_scopes(cfg, service))
        if apply_changes:
            run = partial(
                apply_services,
                cfg,
                environment=env,
                operation=operation,
                services=service,
                force=force,
            )
        else:
            run = partial(
                plan_services, cfg, environment=env, operation=operation, services=service
            )
        result = _run_batch_with_progress(run, total, color=color)
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    if not apply_changes:
        for op in result.operations:
            if op.status is BatchStatus.SUCCESS:
                typer.echo(format_plan(op.result, color=color, mask=cfg.mask))
                typer.echo()

    typer.echo(format_batch_result(result))
    if result.failed:
        raise typer.Exit(1)


@app.command()
def rollback(
    key: Annotated[str, typer.Argument(help="Variable key.")],
    version: Annotated[int, typer.Argument(help="Version to restore.")],
    config: ConfigPath = Path(DEFAULT_CONFIG_FILE),
    scope: ScopeOpt = "shared",
    env: EnvOpt = None,
    dry_run: DryRunOpt = False,
    force: ForceOpt = False,
    no_color: NoColor = False,
) -> None:
    """Restore a variable to an earlier version (recorded as a new version)."""
    from varsync.cli.formatting import format_apply_summary
    from varsync.config import load
    from varsync.config import rollback as rollback_fn

    color = _use_color(no_color)
    try:
        cfg = load(config)
        result = rollback_fn(
            cfg, key, version, scope=_scope(scope), environment=env, dry_run=dry_run, force=force
        )
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    typer.echo(format_apply_summary(result, color=color))
    if result.versions:
        typer.echo(f"{key} is now at version {result.versions[key]}.")


@app.command()
def versions(
    key: Annotated[str, typer.Argument(help="Variable key.")],
    config: ConfigPath = Path(DEFAULT_CONFIG_FILE),
    scope: ScopeOpt = "shared",
    env: EnvOpt = None,
    show_values: Annotated[
        bool,
        typer.Option("--show-values", help="Print values unmasked."),
    ] = False,
    no_color: NoColor = False,
) -> None:
    """List the recorded versions of a variable, newest first."""
    from varsync.cli.formatting import format_versions
    from varsync.config import history, load

    color = _use_color(no_color)
    try:
        cfg = load(config)
        entries = history(cfg, key, scope=_scope(scope), environment=env)
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    typer.echo(format_versions(entries, mask=cfg.mask, show_values=show_values))


@app.command()
def inventory(
    config: ConfigPath = Path(DEFAULT_CONFIG_FILE),
    env: Annotated[
        list[str] | None,
        typer.Option("--env", "-e", help="Environment to include (repeatable)."),
    ] = None,
    no_color: NoColor = False,
) -> None:
    """Show services, orphans, missing variables and coverage across environments."""
    from varsync.cli.formatting import format_inventory
    from varsync.config import inventory as inventory_fn
    from varsync.config import load

    color = _use_color(no_color)
    try:
        cfg = load(config)
        report = inventory_fn(cfg, environments=env)
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    typer.echo(format_inventory(report, color=color))


@app.command()
def drift(
    config: ConfigPath = Path(DEFAULT_CONFIG_FILE),
    scope: ScopeOpt = "shared",
    env: EnvOpt = None,
    no_color: NoColor = False,
) -> None:
    """Compare the effective (inherited) local and remote views of a scope."""
    from varsync.cli.formatting import styler
    from varsync.config import drift as drift_fn
    from varsync.config import load

    color = _use_color(no_color)
    try:
        cfg = load(config)
        changes = drift_fn(cfg, _scope(scope), environment=env)
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    style = styler(color)
    if not (changes.added or changes.updated or changes.deleted):
        typer.echo("No drift detected.")
        raise typer.Exit(0)

    typer.echo("Drift detected:")
    for k in changes.added:
        typer.echo(style(f"  + {k} (local only)", fg="green"))
    for k in changes.updated:
        typer.echo(style(f"  ~ {k} (differs)", fg="yellow"))
    for k in changes.deleted:
        typer.echo(style(f"  - {k} (remote only)", fg="red"))
    raise typer.Exit(2)


# ---------------------------------------------------------------------------
# Local overrides
# ---------------------------------------------------------------------------


@local_app.command(name="set")
def local_set(
    key: Annotated[str, typer.Argument(help="Variable key.")],
    value: Annotated[str, typer.Argument(help="Variable value.")],
    config: ConfigPath = Path(DEFAULT_CONFIG_FILE),
    scope: ScopeOpt = "shared",
    secret: Annotated[
        bool,
        typer.Option("--secret", help="Store in the sensitive bucket."),
    ] = False,
    no_color: NoColor = False,
) -> None:
    """Set a local override."""
    from varsync.config import load, local_store

    color = _use_color(no_color)
    try:
        cfg = load(config)
        target = _scope(scope)
        local_store(cfg).set_one(target, key, value, sensitive=secret)
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    bucket = "secrets" if secret else "configs"
    typer.echo(f"Set {key} in {target} ({bucket}).")


@local_app.command(name="delete")
def local_delete(
    key: Annotated[str, typer.Argument(help="Variable key.")],
    config: ConfigPath = Path(DEFAULT_CONFIG_FILE),
    scope: ScopeOpt = "shared",
    no_color: NoColor = False,
) -> None:
    """Delete a local override."""
    from varsync.config import load, local_store

    color = _use_color(no_color)
    try:
        cfg = load(config)
        target = _scope(scope)
        removed = local_store(cfg).delete_one(target, key)
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    if removed:
        typer.echo(f"Deleted {key} from {target}.")
    else:
        typer.echo(f"{key} is not set in {target}.")


@local_app.command(name="move")
def local_move(
    key: Annotated[str, typer.Argument(help="Variable key.")],
    source: Annotated[str, typer.Option("--from", help="Scope to move the key out of.")],
    target: Annotated[str, typer.Option("--to", help="Scope to move the key into.")],
    config: ConfigPath = Path(DEFAULT_CONFIG_FILE),
    overwrite: Annotated[
        bool,
        typer.Option("--overwrite/--no-overwrite", help="Replace the key if the target has it."),
    ] = True,
    no_color: NoColor = False,
) -> None:
    """Move a local override to another scope, keeping its bucket."""
    from varsync.config import load, local_store

    color = _use_color(no_color)
    try:
        cfg = load(config)
        src, dst = _scope(source), _scope(target)
        local_store(cfg).move_one(key, src, dst, overwrite=overwrite)
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    typer.echo(f"Moved {key} from {src} to {dst}.")
