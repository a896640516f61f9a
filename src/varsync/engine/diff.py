"""Diff engine.

:func:`diff` classifies keys of two flat ``{key: value}`` maps; it knows
nothing about scopes or stores. :func:`orient` then turns that raw
classification into the writes a given operation performs.

Equality is strict string equality. There is no three-way merge base: in a
bidirectional merge any key present on both sides with different values is
divergent, and a :class:`ConflictStrategy` decides what happens to it.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from varsync.engine.types import ChangeSet, ConflictStrategy, PlanOperation, ValueChange

if TYPE_CHECKING:
    from collections.abc import Mapping

    from varsync.core.local import LocalStore
    from varsync.core.remote import RemoteStore
    from varsync.core.scope import Scope

logger = logging.getLogger(__name__)


def diff(
    local: Mapping[str, str],
    remote: Mapping[str, str],
    *,
    strategy: ConflictStrategy | None = None,
) -> ChangeSet:
    """Compare *local* (desired) against *remote* (actual).

    Without *strategy* the comparison is one-directional: a differing key is
    ``updated``. With a strategy it is a bidirectional merge:

    - ``error``: differing keys become ``conflicts``
    - ``local-wins``: differing keys are ``updated`` on the remote side
    - ``remote-wins``: differing keys are ``local_updated``

    Remote-only keys are always reported as ``deleted`` candidates; whether
    they are honored is decided by :func:`orient`.
    """
    changes = ChangeSet()
    for key in sorted(local):
        value = local[key]
        if key not in remote:
            changes.added[key] = value
        elif remote[key] == value:
            changes.unchanged.append(key)
        elif strategy is None or strategy is ConflictStrategy.LOCAL_WINS:
            changes.updated[key] = ValueChange(old=remote[key], new=value)
        elif strategy is ConflictStrategy.REMOTE_WINS:
            changes.local_updated[key] = ValueChange(old=value, new=remote[key])
        else:
            changes.conflicts[key] = ValueChange(old=remote[key], new=value)

    for key in sorted(remote):
        if key not in local:
            changes.deleted[key] = remote[key]

    logger.debug("Diff: %s", changes.summary())
    return changes


def orient(changes: ChangeSet, operation: PlanOperation, *, prune: bool = False) -> ChangeSet:
    """Map a raw :func:`diff` result onto the writes of *operation*.

    - push: remote-only keys are deleted with *prune*, otherwise ``ignored``
    - merge: remote-only keys are pulled into the local files, or deleted
      from the remote with *prune*
    - pull: *changes* must come from ``diff(remote, local)``; everything is
      moved to the local side and local-only keys are removed with *prune*
    """
    match operation:
        case PlanOperation.PUSH:
            if prune:
                return changes.model_copy(deep=True)
            return changes.model_copy(
                update={"deleted": {}, "ignored": sorted(changes.deleted)}, deep=True
            )
        case PlanOperation.MERGE:
            if prune:
                return changes.model_copy(deep=True)
            return changes.model_copy(
                update={"deleted": {}, "local_added": dict(changes.deleted)}, deep=True
            )
        case PlanOperation.PULL:
            return ChangeSet(
                unchanged=list(changes.unchanged),
                local_added=dict(changes.added),
                local_updated={k: v.model_copy() for k, v in changes.updated.items()},
                local_deleted=dict(changes.deleted) if prune else {},
                ignored=[] if prune else sorted(changes.deleted),
                sensitive=list(changes.sensitive),
            )
        case _:
            raise ValueError(f"Unknown operation: {operation}")


def effective_diff(
    local: LocalStore,
    remote: RemoteStore,
    *,
    project: str,
    environment: str,
    scope: Scope,
    inherit: bool = True,
) -> ChangeSet:
    """Compare what a scope effectively sees locally and remotely.

    Both sides include inherited shared values when *inherit* is set. Useful
    for drift checks; the result is not meant to be applied, since inherited
    keys belong to the shared scope.
    """
    desired = local.materialize(scope, inherit=inherit)
    actual = remote.export(project, environment, scope, include_shared=inherit)
    return diff(desired, actual)
