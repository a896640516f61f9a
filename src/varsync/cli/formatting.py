"""Plan, apply, version and inventory output rendering."""

from __future__ import annotations

from typing import TYPE_CHECKING, NamedTuple

import typer

from varsync.core.scope import format_scope
from varsync.core.variables import mask_value
from varsync.engine.plan import mask_plan
from varsync.engine.types import IssueSeverity

if TYPE_CHECKING:
    from collections.abc import Callable

    from varsync.core.variables import MaskOptions
    from varsync.core.versions import VersionEntry
    from varsync.engine.inventory import InventoryReport
    from varsync.engine.types import ApplyResult, Plan


class _ChangeStyle(NamedTuple):
    color: str
    symbol: str


_CHANGE_STYLES: dict[str, _ChangeStyle] = {
    "create": _ChangeStyle("green", "+"),
    "update": _ChangeStyle("yellow", "~"),
    "delete": _ChangeStyle("red", "-"),
    "conflict": _ChangeStyle("magenta", "!"),
}


def styler(color: bool) -> Callable[..., str]:
    """Return ``typer.style`` when *color* is True, otherwise a passthrough."""
    if color:
        return typer.style
    return lambda text, **_kw: text


def _quote(value: str | None) -> str:
    return "null" if value is None else f'"{value}"'


def _align(rows: list[tuple[str, str, str]]) -> list[tuple[str, str, str]]:
    """Right-pad keys so values line up."""
    if not rows:
        return []
    width = max(len(k) for _, k, _ in rows)
    return [(kind, k.ljust(width), v) for kind, k, v in rows]


# ---------------------------------------------------------------------------
# Plans
# ---------------------------------------------------------------------------


def has_actionable_changes(plan: Plan) -> bool:
    return plan.changes.has_changes()


def _plan_rows(plan: Plan) -> tuple[list[tuple[str, str, str]], list[tuple[str, str, str]]]:
    c = plan.changes
    remote = [("create", k, _quote(v)) for k, v in c.added.items()]
    remote += [("update", k, f"{_quote(d.old)} -> {_quote(d.new)}") for k, d in c.updated.items()]
    remote += [("delete", k, "") for k in c.deleted]
    remote += [
        ("conflict", k, f"remote={_quote(d.old)} local={_quote(d.new)}")
        for k, d in c.conflicts.items()
    ]
    local = [("create", k, _quote(v)) for k, v in c.local_added.items()]
    local += [
        ("update", k, f"{_quote(d.old)} -> {_quote(d.new)}") for k, d in c.local_updated.items()
    ]
    local += [("delete", k, "") for k in c.local_deleted]
    return remote, local


def _format_rows(title: str, rows: list[tuple[str, str, str]], *, color: bool) -> list[str]:
    style = styler(color)
    lines = [style(title, bold=True)]
    for kind, key, value in _align(rows):
        s = _CHANGE_STYLES[kind]
        text = f"  {s.symbol} {key}"
        if value:
            text += f" = {value}"
        lines.append(style(text.rstrip(), fg=s.color))
    return lines


def format_plan(plan: Plan, *, color: bool = True, mask: MaskOptions | None = None) -> str:
    """Render a plan with sensitive values masked."""
    masked = mask_plan(plan, mask)
    header = (
        f"{plan.operation.value} {plan.project}/{plan.environment} "
        f"{format_scope(plan.scope)}"
    )
    remote, local = _plan_rows(masked)
    lines = [header]
    if not remote and not local:
        lines.append("No changes. Local and remote are in sync.")
    if remote:
        lines += _format_rows("Remote:", remote, color=color)
    if local:
        lines += _format_rows("Local:", local, color=color)
    if masked.changes.ignored:
        lines.append(f"Ignored (use --prune to delete): {', '.join(masked.changes.ignored)}")
    lines += _format_governance(plan, color=color)
    return "\n".join(lines)


def _format_governance(plan: Plan, *, color: bool) -> list[str]:
    issues = plan.governance.issues
    if not issues:
        return []
    style = styler(color)
    lines = [style("Governance:", bold=True)]
    for issue in issues:
        fg = "red" if issue.severity is IssueSeverity.ERROR else "yellow"
        lines.append(style(f"  {issue.severity.value}: {issue}", fg=fg))
    return lines


def format_plan_summary(plan: Plan, *, color: bool = True) -> str:
    """Render ``Plan: 2 to add, 1 to change, 0 to delete, 1 local.``"""
    style = styler(color)
    s = plan.summary()
    parts = [
        style(f"{n} {verb}", fg=fg) if n and color else f"{n} {verb}"
        for n, verb, fg in (
            (s["add"], "to add", "green"),
            (s["update"], "to change", "yellow"),
            (s["delete"], "to delete", "red"),
            (s["local"], "local", "cyan"),
        )
    ]
    text = f"Plan: {', '.join(parts)}."
    if s["conflict"]:
        text += " " + style(f"{s['conflict']} conflict(s).", fg="magenta")
    return text


def format_apply_summary(result: ApplyResult, *, color: bool = True) -> str:
    """Render ``Apply complete! 3 applied, 0 failed.`` (or a failure header)."""
    style = styler(color)
    if result.dry_run:
        header = style("Dry run:", fg="cyan", bold=True)
        return f"{header} nothing was written."
    s = result.summary()
    if result.ok:
        header = style("Apply complete!", fg="green", bold=True)
    else:
        header = style("Apply finished with errors.", fg="red", bold=True)
    lines = [f"{header} {s['succeeded']} applied, {s['failed']} failed."]
    for f in result.failed:
        lines.append(style(f"  {f.key}: {f.error}", fg="red"))
    if result.audit_failures:
        lines.append(f"  Audit not recorded for: {', '.join(result.audit_failures)}")
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Versions
# ---------------------------------------------------------------------------


def format_versions(
    entries: list[VersionEntry], *, mask: MaskOptions | None = None, show_values: bool = False
) -> str:
    """Render history newest first.

    Values are masked with *mask* when any entry of the key was recorded as
    sensitive, unless *show_values* is set.
    """
    if not entries:
        return "No versions recorded."
    masked = not show_values and any(e.sensitive for e in entries)
    lines = []
    for e in reversed(entries):
        value = mask_value(e.value, mask) if masked else e.value
        lines.append(
            f"v{e.version:<4} {e.timestamp:%Y-%m-%d %H:%M:%S} {e.operation:<8} "
            f"{e.user} ({e.source}) {e.checksum[:19]} = {value}"
        )
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Inventory
# ---------------------------------------------------------------------------


def format_inventory(report: InventoryReport, *, color: bool = True) -> str:
    style = styler(color)
    envs = report.environments
    lines = [style(f"Inventory of {report.project} ({', '.join(envs)})", bold=True), ""]

    lines.append(style("Services:", bold=True))
    width = max((len(s.name) for s in report.services), default=0)
    for s in report.services:
        text = f"  {s.name.ljust(width)}  {s.var_count:>4} var(s)  {', '.join(s.environments)}"
        if s.lifecycle.value == "orphan":
            text = style(f"{text}  [orphan]", fg="red")
        lines.append(text)

    if report.orphaned_vars:
        lines += ["", style("Orphaned variables:", bold=True)]
        lines += [
            style(
                f"  {o.key} ({format_scope(o.scope)}) in {', '.join(o.environments)}: {o.reason}",
                fg="red",
            )
            for o in report.orphaned_vars
        ]

    if report.missing_vars:
        lines += ["", style("Missing variables:", bold=True)]
        lines += [
            style(
                f"  {m.key} ({format_scope(m.scope)}): present in {', '.join(m.present_in)}, "
                f"missing from {', '.join(m.missing_from)}",
                fg="yellow",
            )
            for m in report.missing_vars
        ]

    if report.coverage_matrix:
        lines += ["", style("Coverage:", bold=True)]
        key_width = max(len(f"{r.key} ({format_scope(r.scope)})") for r in report.coverage_matrix)
        lines.append("  " + " " * key_width + "  " + "  ".join(envs))
        for row in report.coverage_matrix:
            label = f"{row.key} ({format_scope(row.scope)})".ljust(key_width)
            marks = "  ".join(
                ("x" if row.environments[e] else "-").ljust(len(e)) for e in envs
            )
            lines.append(f"  {label}  {marks}".rstrip())

    return "\n".join(lines)
