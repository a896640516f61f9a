"""YAML configuration loading and convenience plan/apply API."""

from __future__ import annotations

from typing import TYPE_CHECKING

from varsync.config.loader import DEFAULT_CONFIG_FILE, ConfigError, load_config
from varsync.config.schema import Config, ContextConfig, GovernanceConfig, ReconcileConfig
from varsync.core.audit import JsonlAuditSink, NullAuditSink
from varsync.core.local import LocalStore
from varsync.core.remote import FileRemoteStore
from varsync.core.scope import ServiceScope, SharedScope, parse_scope
from varsync.core.variables import VariableId
from varsync.core.versions import VersionStore
from varsync.engine.apply import Applier, ProgressCallback
from varsync.engine.batch import run_batch
from varsync.engine.inventory import build_inventory
from varsync.engine.plan import Planner
from varsync.engine.types import PlanOperation
from varsync.errors import ApplyError, ValidationError

if TYPE_CHECKING:
    from pathlib import Path

    from varsync.core.audit import AuditSink
    from varsync.core.remote import RemoteStore
    from varsync.core.scope import Scope
    from varsync.core.versions import VersionEntry
    from varsync.engine.batch import BatchResult
    from varsync.engine.batch import ProgressCallback as BatchProgressCallback
    from varsync.engine.inventory import InventoryReport
    from varsync.engine.types import ApplyResult, ChangeSet, ConflictStrategy, Plan

__all__ = [
    "DEFAULT_CONFIG_FILE",
    "Config",
    "ConfigError",
    "ContextConfig",
    "GovernanceConfig",
    "ReconcileConfig",
    "apply",
    "apply_services",
    "drift",
    "history",
    "inventory",
    "load",
    "load_config",
    "plan",
    "plan_services",
    "rollback",
]


def load(path: Path | str) -> Config:
    """Load a YAML configuration file."""
    return load_config(path)


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------


def local_store(config: Config) -> LocalStore:
    return LocalStore(config.resolve(config.local_dir))


def remote_store(config: Config) -> RemoteStore:
    return FileRemoteStore(config.resolve(config.remote_path))


def audit_sink(config: Config) -> AuditSink:
    if config.audit_path is None:
        return NullAuditSink()
    return JsonlAuditSink(config.resolve(config.audit_path))


def _planner(config: Config, remote: RemoteStore | None = None) -> Planner:
    return Planner(
        local=local_store(config),
        remote=remote or remote_store(config),
        project=config.context.project,
        options=config.options(),
    )


def _applier(config: Config, remote: RemoteStore | None = None) -> Applier:
    return Applier(
        remote=remote or remote_store(config),
        versions=VersionStore(config.resolve(config.versions_path)),
        audit=audit_sink(config),
        local=local_store(config),
        options=config.options(),
    )


def service_scopes(config: Config, services: list[str] | None) -> list[ServiceScope]:
    names = services if services is not None else config.services
    if not names:
        names = local_store(config).list_services()
    scopes = {name: parse_scope(name) for name in names}
    bad = [name for name, scope in scopes.items() if not isinstance(scope, ServiceScope)]
    if bad:
        raise ValidationError([f"Invalid service name {name!r}" for name in bad])
    return [scope for scope in scopes.values() if isinstance(scope, ServiceScope)]


# ---------------------------------------------------------------------------
# Single scope
# ---------------------------------------------------------------------------


def plan(
    config: Config,
    scope: Scope | None = None,
    *,
    environment: str | None = None,
    operation: PlanOperation = PlanOperation.MERGE,
    strategy: ConflictStrategy | None = None,
    prune: bool | None = None,
) -> Plan:
    """Plan changes for one scope (shared by default)."""
    return _planner(config).plan(
        scope or SharedScope(),
        environment or config.context.environment,
        operation,
        strategy=strategy,
        prune=prune,
    )


def apply(
    plan_obj: Plan,
    config: Config,
    *,
    dry_run: bool = False,
    all_or_nothing: bool = False,
    force: bool = False,
    progress: ProgressCallback | None = None,
) -> ApplyResult:
    """Apply a previously computed plan."""
    return _applier(config).apply(
        plan_obj,
        dry_run=dry_run,
        all_or_nothing=all_or_nothing,
        force=force,
        progress=progress,
    )


def drift(
    config: Config, scope: Scope | None = None, *, environment: str | None = None
) -> ChangeSet:
    """Effective local vs remote view of one scope, inheritance per the config."""
    env = environment or config.context.environment
    return _planner(config).drift(scope or SharedScope(), env)


def _variable_id(
    config: Config, key: str, scope: Scope | None, environment: str | None
) -> VariableId:
    return VariableId(
        project=config.context.project,
        environment=environment or config.context.environment,
        scope=scope or SharedScope(),
        key=key,
    )


def rollback(
    config: Config,
    key: str,
    version: int,
    *,
    scope: Scope | None = None,
    environment: str | None = None,
    dry_run: bool = False,
    force: bool = False,
) -> ApplyResult:
    """Restore *key* to the value it had at *version*, as a new version."""
    return _applier(config).rollback(
        _variable_id(config, key, scope, environment), version, dry_run=dry_run, force=force
    )


def history(
    config: Config, key: str, *, scope: Scope | None = None, environment: str | None = None
) -> list[VersionEntry]:
    return _applier(config).history(_variable_id(config, key, scope, environment))


# ---------------------------------------------------------------------------
# Many scopes
# ---------------------------------------------------------------------------


def plan_services(
    config: Config,
    *,
    environment: str | None = None,
    operation: PlanOperation = PlanOperation.MERGE,
    services: list[str] | None = None,
    on_progress: BatchProgressCallback | None = None,
) -> BatchResult[ServiceScope, Plan]:
    """Plan every service (configured, or found locally) in one batch."""
    planner = _planner(config)
    env = environment or config.context.environment
    opts = config.options()
    return run_batch(
        service_scopes(config, services),
        lambda scope: planner.plan(scope, env, operation),
        concurrency=opts.concurrency,
        stop_on_error=opts.stop_on_error,
        on_progress=on_progress,
    )


def apply_services(
    config: Config,
    *,
    environment: str | None = None,
    operation: PlanOperation = PlanOperation.MERGE,
    services: list[str] | None = None,
    force: bool = False,
    on_progress: BatchProgressCallback | None = None,
) -> BatchResult[ServiceScope, ApplyResult]:
    """Plan and apply every service in one batch.

    A service whose apply records any per-key failure counts as failed.
    """
    remote = remote_store(config)
    planner = _planner(config, remote)
    applier = _applier(config, remote)
    env = environment or config.context.environment
    opts = config.options()

    def sync_one(scope: ServiceScope) -> ApplyResult:
        result = applier.apply(planner.plan(scope, env, operation, dry_run=False), force=force)
        if not result.ok:
            first = result.failed[0]
            raise ApplyError(result=result, key=first.key, message=first.error)
        return result

    return run_batch(
        service_scopes(config, services),
        sync_one,
        concurrency=opts.concurrency,
        stop_on_error=opts.stop_on_error,
        on_progress=on_progress,
    )


def inventory(
    config: Config, *, environments: list[str] | None = None
) -> InventoryReport:
    """Build the cross-environment inventory of the configured project."""
    return build_inventory(
        remote_store(config),
        config.context.project,
        environments or config.environment_names,
        known_services=config.services,
    )
