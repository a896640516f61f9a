"""Engine types (change sets, plans, results, options)."""

from __future__ import annotations

import json
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

from varsync.core.scope import Scope
from varsync.core.variables import MaskOptions

DEFAULT_PROTECTED_ENVIRONMENTS = ("prd", "prod", "production")


class PlanOperation(str, Enum):
    MERGE = "merge"
    PUSH = "push"
    PULL = "pull"


class PlanStatus(str, Enum):
    PLANNED = "planned"
    APPLIED = "applied"
    BLOCKED = "blocked"
    FAILED = "failed"


class ConflictStrategy(str, Enum):
    LOCAL_WINS = "local-wins"
    REMOTE_WINS = "remote-wins"
    ERROR = "error"


class GuardrailMode(str, Enum):
    OFF = "off"
    WARN = "warn"
    STRICT = "strict"


class IssueSeverity(str, Enum):
    WARNING = "warning"
    ERROR = "error"


class ValueChange(BaseModel):
    old: str | None = None
    new: str | None = None


class ChangeSet(BaseModel):
    """Categorized result of one diff.

    ``added``/``updated``/``deleted`` are writes against the remote store;
    ``local_*`` are writes against the local override files (pull, or the
    remote side winning a merge). ``conflicts`` carry ``old=remote`` and
    ``new=local``.
    """

    added: dict[str, str] = Field(default_factory=dict)
    updated: dict[str, ValueChange] = Field(default_factory=dict)
    deleted: dict[str, str] = Field(default_factory=dict)
    unchanged: list[str] = Field(default_factory=list)
    conflicts: dict[str, ValueChange] = Field(default_factory=dict)
    local_added: dict[str, str] = Field(default_factory=dict)
    local_updated: dict[str, ValueChange] = Field(default_factory=dict)
    local_deleted: dict[str, str] = Field(default_factory=dict)
    ignored: list[str] = Field(default_factory=list)
    sensitive: list[str] = Field(default_factory=list)

    @property
    def remote_write_count(self) -> int:
        return len(self.added) + len(self.updated) + len(self.deleted)

    @property
    def local_write_count(self) -> int:
        return len(self.local_added) + len(self.local_updated) + len(self.local_deleted)

    def has_changes(self) -> bool:
        return bool(self.remote_write_count or self.local_write_count or self.conflicts)

    def is_sensitive(self, key: str) -> bool:
        return key in self.sensitive

    def summary(self) -> dict[str, int]:
        return {
            "add": len(self.added),
            "update": len(self.updated),
            "delete": len(self.deleted),
            "unchanged": len(self.unchanged),
            "conflict": len(self.conflicts),
            "local": self.local_write_count,
            "ignored": len(self.ignored),
        }


class GovernanceIssue(BaseModel):
    """One finding of the plan-time checks. Messages never contain values."""

    key: str
    code: str
    severity: IssueSeverity
    message: str

    def __str__(self) -> str:
        return f"{self.key}: {self.message}"


class GovernanceReport(BaseModel):
    issues: list[GovernanceIssue] = Field(default_factory=list)
    missing_required: list[str] = Field(default_factory=list)

    @property
    def blocked(self) -> bool:
        return any(i.severity is IssueSeverity.ERROR for i in self.issues)

    @property
    def errors(self) -> list[GovernanceIssue]:
        return [i for i in self.issues if i.severity is IssueSeverity.ERROR]

    @property
    def warnings(self) -> list[GovernanceIssue]:
        return [i for i in self.issues if i.severity is IssueSeverity.WARNING]


class Plan(BaseModel):
    id: str
    operation: PlanOperation
    project: str
    environment: str
    scope: Scope
    changes: ChangeSet
    strategy: ConflictStrategy | None = None
    prune: bool = False
    generated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    status: PlanStatus = PlanStatus.PLANNED
    applied_at: datetime | None = None
    governance: GovernanceReport = Field(default_factory=GovernanceReport)

    def summary(self) -> dict[str, int]:
        return self.changes.summary()

    def save(self, path: Path) -> None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        data = self.model_dump(mode="json")
        path.write_text(json.dumps(data, indent=2, sort_keys=True) + "\n", encoding="utf-8")

    @classmethod
    def load(cls, path: Path) -> Plan:
        path = Path(path)
        return cls.model_validate_json(path.read_text(encoding="utf-8"))


class KeyFailure(BaseModel):
    key: str
    error: str


class ApplyResult(BaseModel):
    plan_id: str
    dry_run: bool = False
    status: PlanStatus = PlanStatus.PLANNED
    applied_at: datetime | None = None
    succeeded: list[str] = Field(default_factory=list)
    failed: list[KeyFailure] = Field(default_factory=list)
    compensated: list[str] = Field(default_factory=list)
    audit_failures: list[str] = Field(default_factory=list)
    versions: dict[str, int] = Field(default_factory=dict)
    plan: Plan | None = None

    @property
    def ok(self) -> bool:
        return not self.failed

    def summary(self) -> dict[str, int]:
        return {
            "succeeded": len(self.succeeded),
            "failed": len(self.failed),
            "compensated": len(self.compensated),
        }


class GovernanceOptions(BaseModel):
    """Plan-time checks: value guardrails and per-environment required keys."""

    model_config = ConfigDict(frozen=True)

    value_guardrails: GuardrailMode = GuardrailMode.WARN
    required_vars: dict[str, tuple[str, ...]] = Field(default_factory=dict)

    def required_for(self, environment: str) -> tuple[str, ...]:
        return self.required_vars.get(environment, ())


class ReconcileOptions(BaseModel):
    """Explicit settings threaded through plan, apply and batch calls."""

    model_config = ConfigDict(frozen=True)

    concurrency: int = Field(default=1, ge=1)
    stop_on_error: bool = False
    inherit_shared: bool = True
    prune: bool = False
    strategy: ConflictStrategy = ConflictStrategy.ERROR
    user: str = "anonymous"
    source: str = "cli"
    protected_environments: tuple[str, ...] = DEFAULT_PROTECTED_ENVIRONMENTS
    mask: MaskOptions = Field(default_factory=MaskOptions)
    governance: GovernanceOptions = Field(default_factory=GovernanceOptions)

    def is_protected(self, environment: str) -> bool:
        return environment.lower() in {e.lower() for e in self.protected_environments}
