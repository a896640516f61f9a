"""Inventory and drift analysis across environments.

Read-only: one ``list`` call per environment, no writes, nothing persisted.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from enum import Enum
from typing import TYPE_CHECKING

from pydantic import BaseModel, Field, computed_field

from varsync.core.scope import (
    SHARED,
    Scope,
    ServiceScope,
    SharedScope,
    parse_scope,
    scope_sort_key,
    service_name,
)
from varsync.errors import ValidationError

if TYPE_CHECKING:
    from varsync.core.remote import RemoteStore
    from varsync.core.variables import Variable

logger = logging.getLogger(__name__)

UNKNOWN_SERVICE = "unknown_service"


class Lifecycle(str, Enum):
    ACTIVE = "active"
    ORPHAN = "orphan"


class ServiceSummary(BaseModel):
    scope: Scope
    var_count: int = 0
    environments: list[str] = Field(default_factory=list)
    lifecycle: Lifecycle = Lifecycle.ACTIVE

    @computed_field  # type: ignore[prop-decorator]
    @property
    def name(self) -> str:
        return service_name(self.scope) or SHARED


class OrphanedVar(BaseModel):
    key: str
    scope: Scope
    reason: str = UNKNOWN_SERVICE
    environments: list[str] = Field(default_factory=list)


class MissingVar(BaseModel):
    key: str
    scope: Scope
    present_in: list[str]
    missing_from: list[str]


class CoverageRow(BaseModel):
    key: str
    scope: Scope
    environments: dict[str, bool]

    @property
    def complete(self) -> bool:
        return all(self.environments.values())


class InventoryReport(BaseModel):
    project: str
    environments: list[str]
    services: list[ServiceSummary] = Field(default_factory=list)
    orphaned_vars: list[OrphanedVar] = Field(default_factory=list)
    missing_vars: list[MissingVar] = Field(default_factory=list)
    coverage_matrix: list[CoverageRow] = Field(default_factory=list)


def _row_sort_key(key: str, scope: SharedScope | ServiceScope) -> tuple[str, tuple[int, str]]:
    return (key, scope_sort_key(scope))


def build_inventory(
    remote: RemoteStore,
    project: str,
    environments: Sequence[str],
    known_services: Sequence[str] | None = None,
) -> InventoryReport:
    """Aggregate remote variables of *project* across *environments*.

    Orphan detection needs an authoritative service list: with no
    *known_services*, no service is an orphan and ``orphaned_vars`` is empty.
    Shared variables are never orphans.

    Raises:
        ValidationError: an entry of *known_services* is not a service name.
    """
    envs = list(dict.fromkeys(environments))
    known_scopes = [parse_scope(name) for name in known_services or []]
    bad = [
        name
        for name, scope in zip(known_services or [], known_scopes, strict=True)
        if not isinstance(scope, ServiceScope)
    ]
    if bad:
        raise ValidationError([f"Invalid service name {name!r}" for name in bad])
    known = {scope.name for scope in known_scopes if isinstance(scope, ServiceScope)}
    logger.info("Building inventory for %s across %s", project, ", ".join(envs))

    snapshots: dict[str, list[Variable]] = {env: remote.list(project, env) for env in envs}

    # (scope, key) -> environments where present
    seen: dict[tuple[SharedScope | ServiceScope, str], set[str]] = {}
    by_scope: dict[SharedScope | ServiceScope, ServiceSummary] = {}
    for env, variables in snapshots.items():
        for v in variables:
            seen.setdefault((v.scope, v.key), set()).add(env)
            summary = by_scope.setdefault(v.scope, ServiceSummary(scope=v.scope))
            summary.var_count += 1
            if env not in summary.environments:
                summary.environments.append(env)

    for name in sorted(known):
        scope = ServiceScope(name=name)
        by_scope.setdefault(scope, ServiceSummary(scope=scope))

    def is_orphan(scope: SharedScope | ServiceScope) -> bool:
        return bool(known) and isinstance(scope, ServiceScope) and scope.name not in known

    services = []
    for scope in sorted(by_scope, key=scope_sort_key):
        summary = by_scope[scope]
        summary.environments.sort()
        if is_orphan(scope):
            summary.lifecycle = Lifecycle.ORPHAN
        services.append(summary)

    ordered = sorted(seen, key=lambda sk: _row_sort_key(sk[1], sk[0]))

    orphaned = [
        OrphanedVar(key=key, scope=scope, environments=sorted(seen[(scope, key)]))
        for scope, key in ordered
        if is_orphan(scope)
    ]

    missing = []
    for scope, key in ordered:
        present = seen[(scope, key)]
        if 1 <= len(present) < len(envs):
            missing.append(
                MissingVar(
                    key=key,
                    scope=scope,
                    present_in=sorted(present),
                    missing_from=sorted(e for e in envs if e not in present),
                )
            )

    coverage = [
        CoverageRow(
            key=key,
            scope=scope,
            environments={env: env in seen[(scope, key)] for env in envs},
        )
        for scope, key in ordered
    ]

    report = InventoryReport(
        project=project,
        environments=envs,
        services=services,
        orphaned_vars=orphaned,
        missing_vars=missing,
        coverage_matrix=coverage,
    )
    logger.info(
        "Inventory: %d scope(s), %d orphan(s), %d missing, %d key(s)",
        len(services),
        len(orphaned),
        len(missing),
        len(coverage),
    )
    return report
