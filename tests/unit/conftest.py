"""Shared fixtures for unit tests."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from varsync.config import load
from varsync.core.audit import AuditEvent
from varsync.core.local import LocalStore
from varsync.core.remote import export_from_list
from varsync.core.scope import SharedScope
from varsync.core.variables import Variable, VariableInput
from varsync.core.versions import VersionStore

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

    from varsync.config.schema import Config
    from varsync.core.scope import Scope

_VARSYNC_ENV_VARS = (
    "VARSYNC_PROJECT",
    "VARSYNC_ENVIRONMENT",
    "VARSYNC_USER",
    "VARSYNC_LOG",
    "NO_COLOR",
)


@pytest.fixture(autouse=True)
def _clean_varsync_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove VARSYNC_* env vars so unit tests don't leak host config."""
    for var in _VARSYNC_ENV_VARS:
        monkeypatch.delenv(var, raising=False)


class InMemoryRemoteStore:
    """Dict-backed remote store with per-key failure injection."""

    def __init__(self) -> None:
        self.data: dict[tuple[str, str, Scope, str], Variable] = {}
        self.calls: list[tuple[str, str]] = []
        self.fail_on_set: dict[str, Exception] = {}
        self.fail_on_delete: dict[str, Exception] = {}
        self.list_calls = 0

    def seed(
        self,
        project: str,
        environment: str,
        values: dict[str, str],
        scope: Scope | None = None,
        *,
        sensitive: bool = False,
    ) -> None:
        scope = scope or SharedScope()
        for key, value in values.items():
            self.data[(project, environment, scope, key)] = Variable(
                key=key,
                value=value,
                project=project,
                environment=environment,
                scope=scope,
                sensitive=sensitive,
            )

    def values(self, project: str, environment: str, scope: Scope | None = None) -> dict[str, str]:
        return {v.key: v.value for v in self.list(project, environment, scope or SharedScope())}

    def list(self, project: str, environment: str, scope: Scope | None = None) -> list[Variable]:
        self.list_calls += 1
        return [
            v
            for (p, e, s, _), v in sorted(self.data.items(), key=lambda kv: kv[0][3])
            if p == project and e == environment and (scope is None or s == scope)
        ]

    def get(self, key: str, project: str, environment: str, scope: Scope) -> Variable | None:
        return self.data.get((project, environment, scope, key))

    def set(self, variable: VariableInput) -> None:
        if variable.key in self.fail_on_set:
            raise self.fail_on_set[variable.key]
        self.calls.append(("set", variable.key))
        self.data[(variable.project, variable.environment, variable.scope, variable.key)] = (
            Variable.model_validate(variable.model_dump())
        )

    def delete(self, key: str, project: str, environment: str, scope: Scope) -> bool:
        if key in self.fail_on_delete:
            raise self.fail_on_delete[key]
        self.calls.append(("delete", key))
        return self.data.pop((project, environment, scope, key), None) is not None

    def export(
        self,
        project: str,
        environment: str,
        scope: Scope,
        *,
        include_shared: bool = True,
    ) -> dict[str, str]:
        return export_from_list(self, project, environment, scope, include_shared=include_shared)


class RecordingAuditSink:
    def __init__(self) -> None:
        self.events: list[AuditEvent] = []

    def log(self, event: AuditEvent) -> None:
        self.events.append(event)


class FailingAuditSink:
    def __init__(self) -> None:
        self.attempts = 0

    def log(self, event: AuditEvent) -> None:
        _ = event
        self.attempts += 1
        raise OSError("audit backend down")


@pytest.fixture
def remote() -> InMemoryRemoteStore:
    return InMemoryRemoteStore()


@pytest.fixture
def audit() -> RecordingAuditSink:
    return RecordingAuditSink()


@pytest.fixture
def failing_audit() -> FailingAuditSink:
    return FailingAuditSink()


@pytest.fixture
def versions() -> VersionStore:
    return VersionStore()


@pytest.fixture
def local(tmp_path: Path) -> LocalStore:
    return LocalStore(tmp_path / "local")


@pytest.fixture
def make_config(tmp_path: Path) -> Callable[..., Config]:
    """Factory fixture: write YAML + optional .env, return loaded Config."""

    def _make(yaml_str: str, *, dotenv: str | None = None) -> Config:
        (tmp_path / "varsync.yaml").write_text(yaml_str)
        if dotenv is not None:
            (tmp_path / ".env").write_text(dotenv)
        return load(tmp_path / "varsync.yaml")

    return _make
