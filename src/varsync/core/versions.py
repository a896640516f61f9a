"""Append-only version history for variables.

History is an arena of :class:`VersionEntry` lists keyed by
:attr:`VariableId.slug`. Version numbers start at 1 and only grow; a rollback
appends a new entry carrying an old value and never rewrites the arena.
"""

from __future__ import annotations

import hashlib
import json
import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Literal

from pydantic import BaseModel, Field

from varsync.core.storage import file_lock, write_atomic

if TYPE_CHECKING:
    from varsync.core.variables import VariableId

logger = logging.getLogger(__name__)

VersionOperation = Literal["create", "update", "rollback"]


def value_checksum(value: str) -> str:
    return "sha256:" + hashlib.sha256(value.encode("utf-8")).hexdigest()


class VersionEntry(BaseModel):
    """One immutable historical value of a variable."""

    version: int
    value: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    user: str
    operation: VersionOperation
    source: str
    checksum: str = ""
    sensitive: bool = False


class VersionLog(BaseModel):
    """Serialized form of the arena."""

    version: int = 1
    histories: dict[str, list[VersionEntry]] = Field(default_factory=dict)


class VersionStore:
    """Version arena, in memory or persisted to a JSON file.

    With a *path*, each :meth:`append` reloads the file under a lock, appends
    and writes it back atomically, so two processes never hand out the same
    version number.
    """

    def __init__(self, path: Path | None = None) -> None:
        self._path = Path(path) if path is not None else None
        self._log = self._load()

    @property
    def path(self) -> Path | None:
        return self._path

    def _load(self) -> VersionLog:
        if self._path is None or not self._path.exists():
            return VersionLog()
        return VersionLog.model_validate_json(self._path.read_text(encoding="utf-8"))

    def _save(self) -> None:
        assert self._path is not None
        content = json.dumps(self._log.model_dump(mode="json"), indent=2, sort_keys=True) + "\n"
        write_atomic(self._path, content, backup=True)

    def history(self, variable: VariableId) -> list[VersionEntry]:
        """All entries for *variable*, oldest first."""
        return list(self._log.histories.get(variable.slug, []))

    def latest_version(self, variable: VariableId) -> int:
        """Highest version number recorded, 0 when there is no history."""
        return max((e.version for e in self._log.histories.get(variable.slug, [])), default=0)

    def get(self, variable: VariableId, version: int) -> VersionEntry | None:
        for entry in self._log.histories.get(variable.slug, []):
            if entry.version == version:
                return entry
        return None

    def append(
        self,
        variable: VariableId,
        value: str,
        *,
        user: str,
        operation: VersionOperation,
        source: str,
        sensitive: bool = False,
    ) -> VersionEntry:
        """Record *value* as the next version of *variable*."""
        if self._path is None:
            return self._append(
                variable, value, user=user, operation=operation, source=source, sensitive=sensitive
            )

        with file_lock(self._path):
            self._log = self._load()
            entry = self._append(
                variable, value, user=user, operation=operation, source=source, sensitive=sensitive
            )
            self._save()
        return entry

    def _append(
        self,
        variable: VariableId,
        value: str,
        *,
        user: str,
        operation: VersionOperation,
        source: str,
        sensitive: bool,
    ) -> VersionEntry:
        entry = VersionEntry(
            version=self.latest_version(variable) + 1,
            value=value,
            user=user,
            operation=operation,
            source=source,
            checksum=value_checksum(value),
            sensitive=sensitive,
        )
        self._log.histories.setdefault(variable.slug, []).append(entry)
        logger.debug("Version %d recorded for %s", entry.version, variable.slug)
        return entry
