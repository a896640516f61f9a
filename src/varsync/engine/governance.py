"""Plan-time governance checks.

Two kinds of checks run on every plan :class:`~varsync.engine.plan.Planner`
builds:

- value guardrails on every value the plan writes (empty or blank values,
  placeholders, loopback/private hosts in production, ``*_URL`` keys without a
  scheme, secret-looking keys kept in the plain config bucket)
- required keys per environment, checked against the keys the target scope
  will hold once a push or merge is applied

Empty and blank values always block. Every other finding is a warning in
``warn`` mode and blocks in ``strict`` mode; ``off`` disables the value
guardrails but not the required-key check.
"""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING

from varsync.engine.types import (
    GovernanceIssue,
    GovernanceReport,
    GuardrailMode,
    IssueSeverity,
)

if TYPE_CHECKING:
    from collections.abc import Collection, Iterable, Mapping

    from varsync.engine.types import ChangeSet, ReconcileOptions

logger = logging.getLogger(__name__)

_SENSITIVE_NAME = re.compile(
    r"(_KEY|_TOKEN|_SECRET|_PASSWORD|_PASS|_PRIVATE_KEY|_CLIENT_SECRET|_API_SECRET|_ACCESS_TOKEN)$",
    re.IGNORECASE,
)

_PLACEHOLDERS = [
    re.compile(r"^TODO$", re.IGNORECASE),
    re.compile(r"^CHANGEME$", re.IGNORECASE),
    re.compile(r"^PLACEHOLDER$", re.IGNORECASE),
    re.compile(r"^FIXME$", re.IGNORECASE),
    re.compile(r"^xxx+$", re.IGNORECASE),
    re.compile(r"^your[-_].*[-_]here$", re.IGNORECASE),
    re.compile(r"^<[A-Z_]+>$"),
    re.compile(r"^\$\{[^}]+\}$"),
    re.compile(r"^\{\{[^}]+\}\}$"),
]

_LOCAL_HOSTS = [
    re.compile(r"localhost", re.IGNORECASE),
    re.compile(r"127\.0\.0\.1"),
    re.compile(r"0\.0\.0\.0"),
    re.compile(r"\[::1\]"),
    re.compile(r"\b10\.\d{1,3}\.\d{1,3}\.\d{1,3}\b"),
    re.compile(r"\b172\.(1[6-9]|2\d|3[01])\.\d{1,3}\.\d{1,3}\b"),
    re.compile(r"\b192\.168\.\d{1,3}\.\d{1,3}\b"),
]

_URL_KEY = re.compile(r"_URL$", re.IGNORECASE)
_HAS_SCHEME = re.compile(r"^[a-z][a-z0-9+.-]*://", re.IGNORECASE)
_LOOKS_LIKE_HOST = re.compile(r"^[a-z0-9.-]+\.[a-z]{2,}(:\d+)?(/|$)", re.IGNORECASE)


def is_sensitive_key_name(key: str) -> bool:
    """True when *key* is named like secret material (``*_TOKEN``, ``*_PASSWORD``...)."""
    return bool(_SENSITIVE_NAME.search(key))


def _issue(key: str, code: str, message: str, mode: GuardrailMode) -> GovernanceIssue:
    severity = IssueSeverity.ERROR if mode is GuardrailMode.STRICT else IssueSeverity.WARNING
    return GovernanceIssue(key=key, code=code, severity=severity, message=message)


def check_values(
    values: Mapping[str, str],
    *,
    sensitive: Collection[str],
    production: bool,
    mode: GuardrailMode,
) -> list[GovernanceIssue]:
    """Run the value guardrails over *values*."""
    if mode is GuardrailMode.OFF:
        return []

    issues: list[GovernanceIssue] = []
    for key in sorted(values):
        value = values[key]
        if not value.strip():
            code = "empty-value" if value == "" else "whitespace-value"
            issues.append(
                GovernanceIssue(
                    key=key,
                    code=code,
                    severity=IssueSeverity.ERROR,
                    message="Value is empty; delete the variable or provide a value.",
                )
            )
            continue

        if any(p.search(value) for p in _PLACEHOLDERS):
            issues.append(_issue(key, "placeholder", "Value looks like a placeholder.", mode))

        if production and any(p.search(value) for p in _LOCAL_HOSTS):
            issues.append(
                _issue(
                    key,
                    "localhost-in-production",
                    "Value points at localhost or a private address in a production environment.",
                    mode,
                )
            )

        if _URL_KEY.search(key) and not _HAS_SCHEME.match(value) and _LOOKS_LIKE_HOST.match(value):
            issues.append(
                _issue(key, "url-no-scheme", "URL value is missing a scheme (e.g. https://).", mode)
            )

        if key not in sensitive and is_sensitive_key_name(key):
            issues.append(
                _issue(
                    key,
                    "sensitive-in-config",
                    "Name suggests secret material but the value is not marked sensitive.",
                    mode,
                )
            )
    return issues


def check_required(
    present: Collection[str], required: Iterable[str], mode: GuardrailMode
) -> tuple[list[str], list[GovernanceIssue]]:
    """Required keys absent from *present*, and one issue per missing key."""
    missing = sorted(set(required) - set(present))
    issues = [
        _issue(key, "missing-required", "Required variable is missing.", mode) for key in missing
    ]
    return missing, issues


def written_values(changes: ChangeSet) -> dict[str, str]:
    """Every value *changes* writes, remote or local."""
    values = dict(changes.added)
    values.update({k: c.new for k, c in changes.updated.items() if c.new is not None})
    values.update(changes.local_added)
    values.update({k: c.new for k, c in changes.local_updated.items() if c.new is not None})
    return values


def check_plan(
    changes: ChangeSet,
    *,
    environment: str,
    options: ReconcileOptions,
    resulting_keys: Collection[str] | None = None,
) -> GovernanceReport:
    """Run every check for a plan against *environment*.

    *resulting_keys* are the keys the scope holds once the plan is applied
    (inherited shared keys included where inheritance is on). The required-key
    check is skipped when it is None, as for a pull.
    """
    mode = options.governance.value_guardrails
    issues = check_values(
        written_values(changes),
        sensitive=set(changes.sensitive),
        production=options.is_protected(environment),
        mode=mode,
    )
    missing: list[str] = []
    if resulting_keys is not None:
        missing, required_issues = check_required(
            resulting_keys, options.governance.required_for(environment), mode
        )
        issues += required_issues

    report = GovernanceReport(issues=issues, missing_required=missing)
    for issue in issues:
        logger.debug("Governance %s %s: %s", issue.severity.value, issue.key, issue.code)
    if issues:
        logger.info(
            "Governance: %d warning(s), %d blocking", len(report.warnings), len(report.errors)
        )
    return report
