"""Audit events.

The core only emits events; storing them is up to an :class:`AuditSink`.
Recording is best effort: :func:`emit` turns any sink failure into a returned
:class:`~varsync.errors.AuditWriteFailure` that is logged and never
raised into the mutation that produced the event.
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Literal, Protocol, runtime_checkable

from pydantic import BaseModel, Field

from varsync.errors import AuditWriteFailure

logger = logging.getLogger(__name__)

AuditOperation = Literal["set", "delete"]


class AuditEvent(BaseModel):
    operation: AuditOperation
    key: str
    project: str
    environment: str
    service: str | None = None
    source: str
    user: str = "anonymous"
    previous_value: str | None = None
    new_value: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))


@runtime_checkable
class AuditSink(Protocol):
    def log(self, event: AuditEvent) -> None: ...


class NullAuditSink:
    """Discards every event."""

    def log(self, event: AuditEvent) -> None:
        _ = event


class JsonlAuditSink:
    """Appends one JSON document per event to a file."""

    def __init__(self, path: Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def log(self, event: AuditEvent) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        line = json.dumps(event.model_dump(mode="json"), sort_keys=True)
        with self._path.open("a", encoding="utf-8") as f:
            f.write(line + "\n")

    def read(self) -> list[AuditEvent]:
        if not self._path.exists():
            return []
        return [
            AuditEvent.model_validate_json(line)
            for line in self._path.read_text(encoding="utf-8").splitlines()
            if line.strip()
        ]


def emit(sink: AuditSink, event: AuditEvent) -> AuditWriteFailure | None:
    """Send *event* to *sink*; return the failure instead of raising it."""
    try:
        sink.log(event)
    except Exception as e:
        failure = AuditWriteFailure(event.operation, event.key, str(e))
        logger.warning("%s", failure)
        return failure
    return None
