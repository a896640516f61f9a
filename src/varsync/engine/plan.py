"""Plan construction and review artifacts."""

from __future__ import annotations

import json
import logging
import re
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING

from varsync.core.scope import SharedScope, format_scope, is_shared
from varsync.core.variables import MaskOptions, mask_value
from varsync.engine.diff import diff, effective_diff, orient
from varsync.engine.governance import check_plan
from varsync.engine.types import (
    ChangeSet,
    ConflictStrategy,
    GovernanceReport,
    Plan,
    PlanOperation,
    PlanStatus,
    ReconcileOptions,
    ValueChange,
)
from varsync.errors import ConflictError, GovernanceError

if TYPE_CHECKING:
    from varsync.core.local import LocalStore
    from varsync.core.remote import RemoteStore
    from varsync.core.scope import Scope

logger = logging.getLogger(__name__)

_UNSAFE_ID_CHARS = re.compile(r"[^A-Za-z0-9_-]+")


def plan_id(project: str, environment: str, scope: Scope, generated_at: datetime) -> str:
    """Filesystem-safe id, e.g. ``myapp-dev-service-api-20260101T120000123456Z``."""
    stamp = generated_at.astimezone(UTC).strftime("%Y%m%dT%H%M%S%fZ")
    raw = f"{project}-{environment}-{format_scope(scope)}-{stamp}"
    return _UNSAFE_ID_CHARS.sub("-", raw).strip("-")


def build_plan(
    operation: PlanOperation,
    changes: ChangeSet,
    *,
    project: str,
    environment: str,
    scope: Scope,
    strategy: ConflictStrategy | None = None,
    prune: bool = False,
    dry_run: bool = False,
    generated_at: datetime | None = None,
    governance: GovernanceReport | None = None,
) -> Plan:
    """Wrap *changes* into a :class:`Plan`.

    The status is only an initial default (``planned`` for a dry run,
    ``applied`` otherwise); :meth:`Applier.apply` sets the real outcome.

    Raises:
        ConflictError: *changes* has conflicts. The error carries the plan
            with status ``blocked``.
        GovernanceError: *governance* has blocking issues. The error carries
            the plan with status ``blocked``.
    """
    generated_at = generated_at or datetime.now(UTC)
    plan = Plan(
        id=plan_id(project, environment, scope, generated_at),
        operation=operation,
        project=project,
        environment=environment,
        scope=scope,
        changes=changes,
        strategy=strategy,
        prune=prune,
        generated_at=generated_at,
        status=PlanStatus.PLANNED if dry_run else PlanStatus.APPLIED,
        governance=governance or GovernanceReport(),
    )
    if changes.conflicts:
        blocked = plan.model_copy(update={"status": PlanStatus.BLOCKED})
        logger.info("Plan %s blocked by %d conflict(s)", plan.id, len(changes.conflicts))
        raise ConflictError(list(changes.conflicts), plan=blocked)
    if plan.governance.blocked:
        blocked = plan.model_copy(update={"status": PlanStatus.BLOCKED})
        logger.info("Plan %s blocked by governance checks", plan.id)
        raise GovernanceError(plan.governance.errors, plan=blocked)

    logger.info("Plan %s (%s): %s", plan.id, operation.value, changes.summary())
    return plan


class Planner:
    """Builds plans from the local override files and one remote snapshot."""

    def __init__(
        self,
        *,
        local: LocalStore,
        remote: RemoteStore,
        project: str,
        options: ReconcileOptions | None = None,
    ) -> None:
        self._local = local
        self._remote = remote
        self._project = project
        self._options = options or ReconcileOptions()

    @property
    def project(self) -> str:
        return self._project

    @property
    def options(self) -> ReconcileOptions:
        return self._options

    def plan(
        self,
        scope: Scope,
        environment: str,
        operation: PlanOperation = PlanOperation.MERGE,
        *,
        strategy: ConflictStrategy | None = None,
        prune: bool | None = None,
        dry_run: bool = True,
    ) -> Plan:
        """Diff the scope's local overrides against the remote and build a plan.

        *strategy* only applies to merges and defaults to the configured one;
        *prune* defaults to the configured value.
        """
        prune = self._options.prune if prune is None else prune
        if operation is PlanOperation.MERGE:
            strategy = strategy or self._options.strategy
        else:
            strategy = None

        overrides = self._local.load(scope)
        local_map = overrides.merged()
        # One remote snapshot per plan; never re-read mid-diff.
        snapshot = self._remote.list(self._project, environment, scope)
        remote_map = {v.key: v.value for v in snapshot}

        if operation is PlanOperation.PULL:
            raw = diff(remote_map, local_map)
        else:
            raw = diff(local_map, remote_map, strategy=strategy)

        changes = orient(raw, operation, prune=prune)
        remote_sensitive = {v.key for v in snapshot if v.sensitive}
        changes.sensitive = sorted(overrides.sensitive_keys | remote_sensitive)
        governance = check_plan(
            changes,
            environment=environment,
            options=self._options,
            resulting_keys=self._resulting_keys(scope, environment, operation, remote_map, changes),
        )

        return build_plan(
            operation,
            changes,
            project=self._project,
            environment=environment,
            scope=scope,
            strategy=strategy,
            prune=prune,
            dry_run=dry_run,
            governance=governance,
        )

    def _resulting_keys(
        self,
        scope: Scope,
        environment: str,
        operation: PlanOperation,
        remote_map: dict[str, str],
        changes: ChangeSet,
    ) -> set[str] | None:
        """Keys the scope sees remotely once a push or merge is applied."""
        if operation is PlanOperation.PULL:
            return None
        keys = (set(remote_map) - set(changes.deleted)) | set(changes.added)
        inherit = self._options.inherit_shared and not is_shared(scope)
        if inherit and self._options.governance.required_for(environment):
            keys |= set(self._remote.export(self._project, environment, SharedScope()))
        return keys

    def drift(self, scope: Scope, environment: str) -> ChangeSet:
        """Compare the effective local and remote views of *scope*.

        Inherited shared values are included on both sides when the options
        enable inheritance.
        """
        return effective_diff(
            self._local,
            self._remote,
            project=self._project,
            environment=environment,
            scope=scope,
            inherit=self._options.inherit_shared,
        )


# ----------------------------------------------------------------------
# Review artifacts
# ----------------------------------------------------------------------


def _mask_map(values: dict[str, str], sensitive: set[str], opts: MaskOptions) -> dict[str, str]:
    return {k: (mask_value(v, opts) or "") if k in sensitive else v for k, v in values.items()}


def _mask_changes(
    values: dict[str, ValueChange], sensitive: set[str], opts: MaskOptions
) -> dict[str, ValueChange]:
    return {
        k: ValueChange(old=mask_value(c.old, opts), new=mask_value(c.new, opts))
        if k in sensitive
        else c
        for k, c in values.items()
    }


def mask_plan(plan: Plan, options: MaskOptions | None = None) -> Plan:
    """Copy of *plan* with the values of sensitive keys masked."""
    opts = options or MaskOptions()
    sensitive = set(plan.changes.sensitive)
    c = plan.changes
    masked = c.model_copy(
        update={
            "added": _mask_map(c.added, sensitive, opts),
            "updated": _mask_changes(c.updated, sensitive, opts),
            "deleted": _mask_map(c.deleted, sensitive, opts),
            "conflicts": _mask_changes(c.conflicts, sensitive, opts),
            "local_added": _mask_map(c.local_added, sensitive, opts),
            "local_updated": _mask_changes(c.local_updated, sensitive, opts),
            "local_deleted": _mask_map(c.local_deleted, sensitive, opts),
        }
    )
    return plan.model_copy(update={"changes": masked})


def render_plan_markdown(plan: Plan) -> str:
    """Human-readable summary of an (already masked) plan."""
    c = plan.changes
    lines = [
        "# varsync plan",
        "",
        f"- **ID:** {plan.id}",
        f"- **Operation:** {plan.operation.value}",
        f"- **Project:** {plan.project}",
        f"- **Environment:** {plan.environment}",
        f"- **Scope:** {format_scope(plan.scope)}",
        f"- **Status:** {plan.status.value}",
        f"- **Generated:** {plan.generated_at.isoformat()}",
    ]
    if plan.strategy is not None:
        lines.append(f"- **Strategy:** {plan.strategy.value}")
    lines += ["", "## Summary", "", "| Change | Count |", "|--------|-------|"]
    lines += [f"| {name} | {count} |" for name, count in plan.summary().items()]
    lines.append("")

    entries: list[str] = []
    entries += [f"- `+` **{k}** = {v}" for k, v in c.added.items()]
    entries += [f"- `~` **{k}**: {v.old} -> {v.new}" for k, v in c.updated.items()]
    entries += [f"- `-` **{k}**" for k in c.deleted]
    entries += [f"- `+` **{k}** (local) = {v}" for k, v in c.local_added.items()]
    entries += [f"- `~` **{k}** (local): {v.old} -> {v.new}" for k, v in c.local_updated.items()]
    entries += [f"- `-` **{k}** (local)" for k in c.local_deleted]
    entries += [f"- `!` **{k}**: remote={v.old} local={v.new}" for k, v in c.conflicts.items()]
    if entries:
        lines += ["## Changes", "", *entries, ""]

    if c.ignored:
        lines += ["## Ignored", "", *(f"- {k}" for k in c.ignored), ""]

    if plan.governance.issues:
        lines += ["## Governance", ""]
        lines += [f"- {i.severity.value}: {i}" for i in plan.governance.issues]
        lines.append("")

    return "\n".join(lines)


def write_plan_artifact(
    plan: Plan, directory: Path, *, mask: MaskOptions | None = None
) -> tuple[Path, Path]:
    """Write ``<id>.json`` and ``<id>.md`` review files with sensitive values masked.

    The artifact is for review only; use :meth:`Plan.save` for a plan that
    will be applied later.
    """
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)
    masked = mask_plan(plan, mask)

    json_path = directory / f"{plan.id}.json"
    md_path = directory / f"{plan.id}.md"
    json_path.write_text(
        json.dumps(masked.model_dump(mode="json"), indent=2, sort_keys=True) + "\n",
        encoding="utf-8",
    )
    md_path.write_text(render_plan_markdown(masked) + "\n", encoding="utf-8")
    logger.info("Plan artifact written to %s", json_path)
    return json_path, md_path
