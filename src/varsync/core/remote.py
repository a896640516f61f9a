"""Remote store contract and a JSON-file reference adapter.

The remote store is the source of truth for variables. Real deployments plug
in an encrypted backend implementing :class:`RemoteStore`; the core never
retries remote calls and expects connectivity/auth failures to surface as
:class:`~varsync.errors.RemoteUnavailable`.

:class:`FileRemoteStore` keeps everything in one JSON document. It does not
encrypt anything and is meant for local experiments, tests and CI dry runs.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from pydantic import BaseModel, Field

from varsync.core.scope import SharedScope, merge_for_service
from varsync.core.storage import file_lock, write_atomic
from varsync.core.variables import Variable, VariableInput

if TYPE_CHECKING:
    from varsync.core.scope import Scope

logger = logging.getLogger(__name__)


@runtime_checkable
class RemoteStore(Protocol):
    """Operations the core consumes from the remote store."""

    def list(self, project: str, environment: str, scope: Scope | None = None) -> list[Variable]:
        """All variables of a project+environment, optionally of one scope only."""
        ...

    def get(self, key: str, project: str, environment: str, scope: Scope) -> Variable | None: ...

    def set(self, variable: VariableInput) -> None: ...

    def delete(self, key: str, project: str, environment: str, scope: Scope) -> bool:
        """Delete a variable. Returns False if it did not exist."""
        ...

    def export(
        self,
        project: str,
        environment: str,
        scope: Scope,
        *,
        include_shared: bool = True,
    ) -> dict[str, str]:
        """Effective ``{key: value}`` map for *scope*."""
        ...


def export_from_list(
    store: RemoteStore,
    project: str,
    environment: str,
    scope: Scope,
    *,
    include_shared: bool = True,
) -> dict[str, str]:
    """Default ``export`` built on ``list``: shared values under service values."""
    own = {v.key: v.value for v in store.list(project, environment, scope)}
    if isinstance(scope, SharedScope):
        return own
    shared_vars = {v.key: v.value for v in store.list(project, environment, SharedScope())}
    return merge_for_service(shared_vars, own, include_shared)


class _RemoteDocument(BaseModel):
    version: int = 1
    variables: list[Variable] = Field(default_factory=list)


class FileRemoteStore:
    """Unencrypted single-file implementation of :class:`RemoteStore`.

    Every mutation is a locked read-modify-write of the whole document.
    """

    def __init__(self, path: Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def _read(self) -> _RemoteDocument:
        if not self._path.exists():
            return _RemoteDocument()
        return _RemoteDocument.model_validate_json(self._path.read_text(encoding="utf-8"))

    def _write(self, doc: _RemoteDocument) -> None:
        doc.variables.sort(key=lambda v: (v.project, v.environment, str(v.scope), v.key))
        content = json.dumps(doc.model_dump(mode="json"), indent=2, sort_keys=True) + "\n"
        write_atomic(self._path, content, backup=True, mode=0o600)

    @staticmethod
    def _matches(
        v: Variable, key: str | None, project: str, environment: str, scope: Scope | None
    ) -> bool:
        return (
            v.project == project
            and v.environment == environment
            and (scope is None or v.scope == scope)
            and (key is None or v.key == key)
        )

    def list(self, project: str, environment: str, scope: Scope | None = None) -> list[Variable]:
        doc = self._read()
        return [v for v in doc.variables if self._matches(v, None, project, environment, scope)]

    def get(self, key: str, project: str, environment: str, scope: Scope) -> Variable | None:
        for v in self._read().variables:
            if self._matches(v, key, project, environment, scope):
                return v
        return None

    def set(self, variable: VariableInput) -> None:
        with file_lock(self._path):
            doc = self._read()
            doc.variables = [
                v
                for v in doc.variables
                if not self._matches(
                    v, variable.key, variable.project, variable.environment, variable.scope
                )
            ]
            doc.variables.append(Variable.model_validate(variable.model_dump()))
            self._write(doc)
        logger.debug("Remote set %s", variable.id)

    def delete(self, key: str, project: str, environment: str, scope: Scope) -> bool:
        with file_lock(self._path):
            doc = self._read()
            kept = [
                v for v in doc.variables if not self._matches(v, key, project, environment, scope)
            ]
            if len(kept) == len(doc.variables):
                return False
            doc.variables = kept
            self._write(doc)
        logger.debug("Remote delete %s/%s/%s/%s", project, environment, scope, key)
        return True

    def export(
        self,
        project: str,
        environment: str,
        scope: Scope,
        *,
        include_shared: bool = True,
    ) -> dict[str, str]:
        return export_from_list(self, project, environment, scope, include_shared=include_shared)
