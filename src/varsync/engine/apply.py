"""Apply engine: executes plans against the remote store."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Literal

from varsync.core.audit import AuditEvent, NullAuditSink, emit
from varsync.core.scope import service_name
from varsync.core.variables import VariableId, VariableInput, mask_value
from varsync.engine.plan import build_plan
from varsync.engine.types import (
    ApplyResult,
    ChangeSet,
    KeyFailure,
    Plan,
    PlanOperation,
    PlanStatus,
    ReconcileOptions,
    ValueChange,
)
from varsync.errors import (
    ApplyError,
    ConflictError,
    GovernanceError,
    ProtectedEnvironmentError,
    VersionNotFound,
)

if TYPE_CHECKING:
    from varsync.core.audit import AuditSink
    from varsync.core.local import LocalStore
    from varsync.core.remote import RemoteStore
    from varsync.core.versions import VersionEntry, VersionOperation, VersionStore

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str, Literal["start", "done"]], None]

StepKind = Literal["create", "update", "delete", "local-set", "local-delete"]


@dataclass
class _Step:
    key: str
    kind: StepKind
    value: str | None = None


@dataclass
class _Undo:
    """How to revert one write: restore *previous* or delete when None."""

    key: str
    previous: str | None
    sensitive: bool
    local: bool = False


def _steps(changes: ChangeSet) -> list[_Step]:
    """Remote writes in order added, updated, deleted; then local writes."""
    steps = [_Step(k, "create", v) for k, v in changes.added.items()]
    steps += [_Step(k, "update", c.new) for k, c in changes.updated.items()]
    steps += [_Step(k, "delete") for k in changes.deleted]
    steps += [_Step(k, "local-set", v) for k, v in changes.local_added.items()]
    steps += [_Step(k, "local-set", c.new) for k, c in changes.local_updated.items()]
    steps += [_Step(k, "local-delete") for k in changes.local_deleted]
    return steps


class Applier:
    """Executes plans, recording versions and audit events.

    Remote writes run sequentially within one call. Apply trusts the plan's
    recorded changes and does not re-diff; re-applying an applied plan
    appends new versions even when values did not change.
    """

    def __init__(
        self,
        *,
        remote: RemoteStore,
        versions: VersionStore,
        audit: AuditSink | None = None,
        local: LocalStore | None = None,
        options: ReconcileOptions | None = None,
    ) -> None:
        self._remote = remote
        self._versions = versions
        self._audit = audit or NullAuditSink()
        self._local = local
        self._options = options or ReconcileOptions()

    @property
    def options(self) -> ReconcileOptions:
        return self._options

    def apply(
        self,
        plan: Plan,
        *,
        dry_run: bool = False,
        all_or_nothing: bool = False,
        force: bool = False,
        progress: ProgressCallback | None = None,
    ) -> ApplyResult:
        """Execute *plan*.

        Per-key failures are recorded in the result and the remaining keys
        still run. With *all_or_nothing*, the first failure reverts the writes
        already made, remote and local, newest first, and raises
        :class:`ApplyError`.

        The returned result carries a copy of *plan* with its final status and
        ``applied_at``. A dry run validates and returns without touching any
        store.
        """
        return self._execute(
            plan,
            dry_run=dry_run,
            all_or_nothing=all_or_nothing,
            force=force,
            progress=progress,
            version_operation=None,
            source=self._options.source,
        )

    def rollback(
        self,
        variable: VariableId,
        target_version: int,
        *,
        dry_run: bool = False,
        force: bool = False,
    ) -> ApplyResult:
        """Write the value of *target_version* back as a new version.

        Raises:
            VersionNotFound: *variable* has no entry numbered *target_version*.
        """
        entry = self._versions.get(variable, target_version)
        if entry is None:
            raise VersionNotFound(variable.slug, target_version)

        current = self._remote.get(
            variable.key, variable.project, variable.environment, variable.scope
        )
        # The key may have been deleted since; its recorded flag still applies.
        sensitive = entry.sensitive or (current is not None and current.sensitive)
        changes = ChangeSet(
            updated={
                variable.key: ValueChange(
                    old=current.value if current is not None else None, new=entry.value
                )
            },
            sensitive=[variable.key] if sensitive else [],
        )
        plan = build_plan(
            PlanOperation.PUSH,
            changes,
            project=variable.project,
            environment=variable.environment,
            scope=variable.scope,
            dry_run=dry_run,
        )
        logger.info("Rolling back %s to version %d", variable.slug, target_version)
        return self._execute(
            plan,
            dry_run=dry_run,
            all_or_nothing=True,
            force=force,
            progress=None,
            version_operation="rollback",
            source="rollback",
        )

    def history(self, variable: VariableId) -> list[VersionEntry]:
        return self._versions.history(variable)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _check(self, plan: Plan, *, dry_run: bool, force: bool) -> None:
        if plan.changes.conflicts:
            raise ConflictError(list(plan.changes.conflicts), plan=plan)
        if plan.governance.blocked or plan.status is PlanStatus.BLOCKED:
            raise GovernanceError(plan.governance.errors, plan=plan)
        if not dry_run and not force and self._options.is_protected(plan.environment):
            raise ProtectedEnvironmentError(plan.environment)
        if plan.changes.local_write_count and self._local is None:
            raise ValueError(f"Plan {plan.id} writes local overrides but no local store is set")

    def _execute(
        self,
        plan: Plan,
        *,
        dry_run: bool,
        all_or_nothing: bool,
        force: bool,
        progress: ProgressCallback | None,
        version_operation: VersionOperation | None,
        source: str,
    ) -> ApplyResult:
        self._check(plan, dry_run=dry_run, force=force)
        result = ApplyResult(plan_id=plan.id, dry_run=dry_run)
        steps = _steps(plan.changes)

        if dry_run:
            logger.info("Dry run of plan %s: %d change(s), nothing written", plan.id, len(steps))
            result.plan = plan.model_copy(update={"status": PlanStatus.PLANNED})
            return result

        logger.info("Applying plan %s: %d change(s)", plan.id, len(steps))
        undo: list[_Undo] = []

        for step in steps:
            logger.debug("Applying %s: %s", step.key, step.kind)
            if progress:
                progress(step.key, "start")
            try:
                self._run_step(plan, step, result, undo, version_operation, source)
            except Exception as e:
                result.failed.append(KeyFailure(key=step.key, error=str(e)))
                logger.debug("Apply of %s failed: %s", step.key, e)
                if all_or_nothing:
                    self._compensate(plan, undo, result)
                    result.status = PlanStatus.FAILED
                    result.plan = plan.model_copy(update={"status": PlanStatus.FAILED})
                    raise ApplyError(result=result, key=step.key, message=str(e)) from e
                continue
            result.succeeded.append(step.key)
            if progress:
                progress(step.key, "done")

        result.status = PlanStatus.FAILED if result.failed else PlanStatus.APPLIED
        result.applied_at = datetime.now(UTC)
        result.plan = plan.model_copy(
            update={"status": result.status, "applied_at": result.applied_at}
        )
        logger.info("Plan %s %s: %s", plan.id, result.status.value, result.summary())
        return result

    def _variable_id(self, plan: Plan, key: str) -> VariableId:
        return VariableId(
            project=plan.project, environment=plan.environment, scope=plan.scope, key=key
        )

    def _run_step(
        self,
        plan: Plan,
        step: _Step,
        result: ApplyResult,
        undo: list[_Undo],
        version_operation: VersionOperation | None,
        source: str,
    ) -> None:
        sensitive = plan.changes.is_sensitive(step.key)
        match step.kind:
            case "create" | "update":
                assert step.value is not None
                previous = plan.changes.updated[step.key].old if step.kind == "update" else None
                self._set_remote(plan, step.key, step.value, sensitive=sensitive)
                undo.append(_Undo(step.key, previous, sensitive))
                entry = self._versions.append(
                    self._variable_id(plan, step.key),
                    step.value,
                    user=self._options.user,
                    operation=version_operation or step.kind,
                    source=source,
                    sensitive=sensitive,
                )
                result.versions[step.key] = entry.version
                self._emit(
                    plan, result, "set", step.key, previous, step.value, sensitive, source,
                    version=entry.version,
                )
            case "delete":
                current = self._remote.get(step.key, plan.project, plan.environment, plan.scope)
                previous = current.value if current is not None else plan.changes.deleted[step.key]
                self._remote.delete(step.key, plan.project, plan.environment, plan.scope)
                undo.append(_Undo(step.key, previous, sensitive))
                self._emit(plan, result, "delete", step.key, previous, None, sensitive, source)
            case "local-set":
                assert self._local is not None and step.value is not None
                restore = self._local_undo(plan, step.key)
                self._local.set_one(plan.scope, step.key, step.value, sensitive=sensitive)
                undo.append(restore)
            case "local-delete":
                assert self._local is not None
                restore = self._local_undo(plan, step.key)
                self._local.delete_one(plan.scope, step.key)
                undo.append(restore)

    def _local_undo(self, plan: Plan, key: str) -> _Undo:
        assert self._local is not None
        overrides = self._local.load(plan.scope)
        if key in overrides.secret:
            return _Undo(key, overrides.secret[key], sensitive=True, local=True)
        return _Undo(key, overrides.config.get(key), sensitive=False, local=True)

    def _set_remote(self, plan: Plan, key: str, value: str, *, sensitive: bool) -> None:
        self._remote.set(
            VariableInput(
                key=key,
                value=value,
                project=plan.project,
                environment=plan.environment,
                scope=plan.scope,
                sensitive=sensitive,
            )
        )

    def _compensate(self, plan: Plan, undo: list[_Undo], result: ApplyResult) -> None:
        """Revert writes newest first. Failures here are logged, not raised.

        Local files are restored silently; remote restores record a
        ``rollback`` version and audit events with source ``compensation``.
        """
        for item in reversed(undo):
            try:
                if item.local:
                    self._revert_local(plan, item)
                elif item.previous is None:
                    self._remote.delete(item.key, plan.project, plan.environment, plan.scope)
                    self._emit(
                        plan, result, "delete", item.key, None, None, item.sensitive, "compensation"
                    )
                else:
                    self._set_remote(plan, item.key, item.previous, sensitive=item.sensitive)
                    entry = self._versions.append(
                        self._variable_id(plan, item.key),
                        item.previous,
                        user=self._options.user,
                        operation="rollback",
                        source="compensation",
                        sensitive=item.sensitive,
                    )
                    self._emit(
                        plan, result, "set", item.key, None, item.previous, item.sensitive,
                        "compensation", version=entry.version,
                    )
            except Exception as e:
                logger.error("Could not revert %s: %s", item.key, e)
                continue
            result.compensated.append(item.key)
        logger.info("Reverted %d of %d write(s)", len(result.compensated), len(undo))

    def _revert_local(self, plan: Plan, item: _Undo) -> None:
        assert self._local is not None
        if item.previous is None:
            self._local.delete_one(plan.scope, item.key)
        else:
            self._local.set_one(plan.scope, item.key, item.previous, sensitive=item.sensitive)

    def _emit(
        self,
        plan: Plan,
        result: ApplyResult,
        operation: Literal["set", "delete"],
        key: str,
        previous: str | None,
        new: str | None,
        sensitive: bool,
        source: str,
        *,
        version: int | None = None,
    ) -> None:
        mask = self._options.mask
        metadata: dict[str, object] = {"plan_id": plan.id}
        if version is not None:
            metadata["version"] = version
        event = AuditEvent(
            operation=operation,
            key=key,
            project=plan.project,
            environment=plan.environment,
            service=service_name(plan.scope),
            source=source,
            user=self._options.user,
            previous_value=mask_value(previous, mask) if sensitive else previous,
            new_value=mask_value(new, mask) if sensitive else new,
            metadata=metadata,
        )
        if emit(self._audit, event) is not None:
            result.audit_failures.append(key)
