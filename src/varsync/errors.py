"""Error types."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from varsync.engine.types import ApplyResult, GovernanceIssue, Plan


class VarsyncError(Exception):
    """Base exception for reconciliation errors."""


class ValidationError(VarsyncError):
    """Local input failed validation (malformed scope, missing key/value)."""

    def __init__(self, errors: list[str]) -> None:
        self.errors = errors
        msg = "Validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
        super().__init__(msg)


class RemoteUnavailable(VarsyncError):
    """The remote store could not be reached or refused the request."""

    def __init__(self, message: str, *, operation: str | None = None) -> None:
        self.operation = operation
        prefix = f"Remote {operation} failed" if operation else "Remote store unavailable"
        super().__init__(f"{prefix}: {message}")


class ConflictError(VarsyncError):
    """A bidirectional merge found divergent values and no strategy resolves them.

    Carries the ``blocked`` plan so callers can show what diverged before
    re-planning with an explicit strategy.
    """

    def __init__(self, keys: list[str], *, plan: Plan | None = None) -> None:
        self.keys = sorted(keys)
        self.plan = plan
        super().__init__(
            f"{len(self.keys)} conflicting key(s): {', '.join(self.keys)}; "
            "re-run with strategy 'local-wins' or 'remote-wins'"
        )


class GovernanceError(VarsyncError):
    """Plan-time checks found blocking issues (guardrail errors, missing required keys).

    Carries the ``blocked`` plan, whose ``governance`` report lists every issue.
    """

    def __init__(self, issues: list[GovernanceIssue], *, plan: Plan | None = None) -> None:
        self.issues = issues
        self.plan = plan
        keys = sorted({i.key for i in issues})
        super().__init__(f"{len(issues)} blocking issue(s) on {', '.join(keys)}")


class VersionNotFound(VarsyncError):
    """Raised when rolling back to a version that does not exist."""

    def __init__(self, slug: str, version: int) -> None:
        super().__init__(f"Version {version} not found for {slug}")
        self.slug = slug
        self.version = version


class AuditWriteFailure(VarsyncError):
    """An audit event could not be recorded.

    Returned by :func:`varsync.core.audit.emit`, never raised out of apply.
    """

    def __init__(self, operation: str, key: str, message: str) -> None:
        super().__init__(f"Audit write failed for {operation} {key}: {message}")
        self.operation = operation
        self.key = key


class ProtectedEnvironmentError(VarsyncError):
    """Applying to a protected environment without ``force``."""

    def __init__(self, environment: str) -> None:
        super().__init__(f"Environment '{environment}' is protected; re-run with force")
        self.environment = environment


class StateLockError(VarsyncError):
    """Raised when a file lock cannot be acquired or released."""


class ApplyError(VarsyncError):
    """Raised when an all-or-nothing apply fails.

    Carries the partial result (what was applied and compensated before the
    failure). The original exception is chained via ``__cause__``.
    """

    def __init__(self, *, result: ApplyResult, key: str, message: str) -> None:
        self.result = result
        self.key = key
        super().__init__(f"Apply failed on {key}: {message}")
