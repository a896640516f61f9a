from __future__ import annotations

import json
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import pytest

from varsync.core.scope import ServiceScope, SharedScope
from varsync.core.variables import MaskOptions
from varsync.engine.plan import (
    Planner,
    build_plan,
    mask_plan,
    plan_id,
    render_plan_markdown,
    write_plan_artifact,
)
from varsync.engine.types import (
    ChangeSet,
    ConflictStrategy,
    GovernanceIssue,
    GovernanceOptions,
    GovernanceReport,
    GuardrailMode,
    IssueSeverity,
    Plan,
    PlanOperation,
    PlanStatus,
    ReconcileOptions,
    ValueChange,
)
from varsync.errors import ConflictError, GovernanceError

if TYPE_CHECKING:
    from pathlib import Path

API = ServiceScope(name="api")


@pytest.fixture
def planner(local, remote) -> Planner:
    return Planner(local=local, remote=remote, project="acme")


def test_plan_id_is_filesystem_safe() -> None:
    ts = datetime(2026, 1, 2, 3, 4, 5, 6, tzinfo=UTC)
    assert plan_id("my app", "dev", API, ts) == "my-app-dev-service-api-20260102T030405000006Z"


class TestBuildPlan:
    def test_status_defaults(self) -> None:
        changes = ChangeSet(added={"A": "1"})
        kwargs = {"project": "acme", "environment": "dev", "scope": SharedScope()}
        assert build_plan(PlanOperation.PUSH, changes, dry_run=True, **kwargs).status is (
            PlanStatus.PLANNED
        )
        assert build_plan(PlanOperation.PUSH, changes, **kwargs).status is PlanStatus.APPLIED

    def test_conflicts_block(self) -> None:
        changes = ChangeSet(conflicts={"B": ValueChange(old="r", new="l"), "A": ValueChange()})
        with pytest.raises(ConflictError) as excinfo:
            build_plan(
                PlanOperation.MERGE,
                changes,
                project="acme",
                environment="dev",
                scope=SharedScope(),
                strategy=ConflictStrategy.ERROR,
            )
        assert excinfo.value.keys == ["A", "B"]
        assert excinfo.value.plan is not None
        assert excinfo.value.plan.status is PlanStatus.BLOCKED

    def test_governance_errors_block(self) -> None:
        report = GovernanceReport(
            issues=[
                GovernanceIssue(
                    key="A", code="empty-value", severity=IssueSeverity.ERROR, message="empty"
                )
            ]
        )
        with pytest.raises(GovernanceError) as excinfo:
            build_plan(
                PlanOperation.PUSH,
                ChangeSet(added={"A": ""}),
                project="acme",
                environment="dev",
                scope=SharedScope(),
                governance=report,
            )
        assert [i.code for i in excinfo.value.issues] == ["empty-value"]
        assert excinfo.value.plan.status is PlanStatus.BLOCKED
        assert excinfo.value.plan.governance == report


class TestPlanner:
    def test_push(self, planner: Planner, local, remote) -> None:
        local.set_one(SharedScope(), "A", "1")
        local.set_one(SharedScope(), "B", "2")
        remote.seed("acme", "dev", {"A": "1", "C": "3"})

        plan = planner.plan(SharedScope(), "dev", PlanOperation.PUSH)

        assert plan.status is PlanStatus.PLANNED
        assert plan.strategy is None
        assert plan.changes.added == {"B": "2"}
        assert plan.changes.ignored == ["C"]
        assert plan.summary()["add"] == 1

    def test_single_remote_snapshot(self, planner: Planner, local, remote) -> None:
        local.set_one(API, "A", "1")
        planner.plan(API, "dev", PlanOperation.PUSH)
        assert remote.list_calls == 1

    def test_merge_conflict_raises(self, planner: Planner, local, remote) -> None:
        local.set_one(SharedScope(), "A", "local")
        remote.seed("acme", "dev", {"A": "remote"})

        with pytest.raises(ConflictError) as excinfo:
            planner.plan(SharedScope(), "dev")
        assert excinfo.value.keys == ["A"]

    def test_merge_with_strategy(self, planner: Planner, local, remote) -> None:
        local.set_one(SharedScope(), "A", "local")
        remote.seed("acme", "dev", {"A": "remote", "R": "r"})

        plan = planner.plan(SharedScope(), "dev", strategy=ConflictStrategy.REMOTE_WINS)

        assert plan.strategy is ConflictStrategy.REMOTE_WINS
        assert plan.changes.local_updated == {"A": ValueChange(old="local", new="remote")}
        assert plan.changes.local_added == {"R": "r"}

    def test_configured_defaults(self, local, remote) -> None:
        opts = ReconcileOptions(prune=True, strategy=ConflictStrategy.LOCAL_WINS)
        planner = Planner(local=local, remote=remote, project="acme", options=opts)
        local.set_one(SharedScope(), "A", "local")
        remote.seed("acme", "dev", {"A": "remote", "OLD": "x"})

        plan = planner.plan(SharedScope(), "dev")

        assert plan.prune is True
        assert plan.changes.updated == {"A": ValueChange(old="remote", new="local")}
        assert plan.changes.deleted == {"OLD": "x"}

        no_prune = planner.plan(SharedScope(), "dev", PlanOperation.PUSH, prune=False)
        assert no_prune.changes.ignored == ["OLD"]

    def test_pull(self, planner: Planner, local, remote) -> None:
        local.set_one(SharedScope(), "ONLY_LOCAL", "x")
        remote.seed("acme", "dev", {"A": "1"})

        plan = planner.plan(SharedScope(), "dev", PlanOperation.PULL)

        assert plan.changes.local_added == {"A": "1"}
        assert plan.changes.ignored == ["ONLY_LOCAL"]
        assert plan.changes.remote_write_count == 0

    def test_sensitive_keys_from_both_sides(self, planner: Planner, local, remote) -> None:
        local.set_one(SharedScope(), "TOKEN", "t0k3n-value", sensitive=True)
        remote.seed("acme", "dev", {"PASSWORD": "p"}, sensitive=True)
        remote.seed("acme", "dev", {"PLAIN": "p"})

        plan = planner.plan(SharedScope(), "dev", PlanOperation.PUSH)
        assert plan.changes.sensitive == ["PASSWORD", "TOKEN"]

    def test_scopes_do_not_leak(self, planner: Planner, local, remote) -> None:
        remote.seed("acme", "dev", {"SHARED_ONLY": "1"})
        local.set_one(API, "A", "1")

        plan = planner.plan(API, "dev", PlanOperation.PUSH, prune=True)
        assert plan.changes.deleted == {}
        assert plan.changes.added == {"A": "1"}


def _governed(local, remote, **governance) -> Planner:
    options = ReconcileOptions(governance=GovernanceOptions(**governance))
    return Planner(local=local, remote=remote, project="acme", options=options)


class TestPlannerGovernance:
    def test_warnings_recorded_on_plan(self, planner: Planner, local) -> None:
        local.set_one(SharedScope(), "API_TOKEN", "abc123456")
        local.set_one(SharedScope(), "HOST", "TODO")

        plan = planner.plan(SharedScope(), "dev", PlanOperation.PUSH)

        assert plan.status is PlanStatus.PLANNED
        assert [(i.key, i.code) for i in plan.governance.warnings] == [
            ("API_TOKEN", "sensitive-in-config"),
            ("HOST", "placeholder"),
        ]

    def test_empty_value_blocks(self, planner: Planner, local) -> None:
        local.set_one(SharedScope(), "A", "")

        with pytest.raises(GovernanceError) as excinfo:
            planner.plan(SharedScope(), "dev", PlanOperation.PUSH)
        assert excinfo.value.plan.status is PlanStatus.BLOCKED

    def test_strict_mode_blocks_warnings(self, local, remote) -> None:
        planner = _governed(local, remote, value_guardrails=GuardrailMode.STRICT)
        local.set_one(SharedScope(), "HOST", "CHANGEME")

        with pytest.raises(GovernanceError) as excinfo:
            planner.plan(SharedScope(), "dev", PlanOperation.PUSH)
        assert [(i.key, i.code) for i in excinfo.value.issues] == [("HOST", "placeholder")]

    def test_required_vars_use_resulting_keys(self, local, remote) -> None:
        planner = _governed(local, remote, required_vars={"dev": ("A", "B", "C")})
        remote.seed("acme", "dev", {"A": "1", "OLD": "x"})
        local.set_one(SharedScope(), "B", "2")

        plan = planner.plan(SharedScope(), "dev", PlanOperation.PUSH)

        assert plan.governance.missing_required == ["C"]

    def test_required_vars_inherited_from_shared(self, local, remote) -> None:
        planner = _governed(local, remote, required_vars={"dev": ("DATABASE_URL",)})
        remote.seed("acme", "dev", {"DATABASE_URL": "postgres://db/app"})
        local.set_one(API, "PORT", "8080")

        plan = planner.plan(API, "dev", PlanOperation.PUSH)
        assert plan.governance.missing_required == []

        no_inherit = Planner(
            local=local,
            remote=remote,
            project="acme",
            options=ReconcileOptions(
                inherit_shared=False,
                governance=GovernanceOptions(required_vars={"dev": ("DATABASE_URL",)}),
            ),
        )
        plan = no_inherit.plan(API, "dev", PlanOperation.PUSH)
        assert plan.governance.missing_required == ["DATABASE_URL"]

    def test_required_vars_skipped_for_pull(self, local, remote) -> None:
        planner = _governed(local, remote, required_vars={"dev": ("A",)})
        remote.seed("acme", "dev", {"B": "1"})

        plan = planner.plan(SharedScope(), "dev", PlanOperation.PULL)
        assert plan.governance.issues == []

    def test_governance_in_markdown(self, planner: Planner, local) -> None:
        local.set_one(SharedScope(), "HOST", "TODO")
        md = render_plan_markdown(planner.plan(SharedScope(), "dev", PlanOperation.PUSH))

        assert "## Governance" in md
        assert "- warning: HOST: Value looks like a placeholder." in md


class TestDrift:
    def test_inherits_shared_by_default(self, planner: Planner, local, remote) -> None:
        local.set_one(SharedScope(), "LOG_LEVEL", "debug")
        local.set_one(API, "PORT", "8080")
        remote.seed("acme", "dev", {"PORT": "8080"}, API)

        changes = planner.drift(API, "dev")
        assert changes.added == {"LOG_LEVEL": "debug"}
        assert changes.unchanged == ["PORT"]

    def test_inheritance_follows_options(self, local, remote) -> None:
        planner = Planner(
            local=local,
            remote=remote,
            project="acme",
            options=ReconcileOptions(inherit_shared=False),
        )
        local.set_one(SharedScope(), "LOG_LEVEL", "debug")
        local.set_one(API, "PORT", "8080")
        remote.seed("acme", "dev", {"PORT": "8080"}, API)

        changes = planner.drift(API, "dev")
        assert not changes.has_changes()


def _sensitive_plan() -> Plan:
    changes = ChangeSet(
        added={"TOKEN": "supersecretpassword", "PLAIN": "visible"},
        updated={"PASSWORD": ValueChange(old="oldpassword1", new="newpassword2")},
        ignored=["STALE"],
        sensitive=["TOKEN", "PASSWORD"],
    )
    return build_plan(
        PlanOperation.PUSH,
        changes,
        project="acme",
        environment="dev",
        scope=SharedScope(),
        dry_run=True,
    )


class TestArtifacts:
    def test_mask_plan(self) -> None:
        masked = mask_plan(_sensitive_plan())
        assert masked.changes.added == {"TOKEN": "supe****word", "PLAIN": "visible"}
        assert masked.changes.updated["PASSWORD"] == ValueChange(
            old="oldp****ord1", new="newp****ord2"
        )

    def test_mask_plan_options(self) -> None:
        masked = mask_plan(_sensitive_plan(), MaskOptions(min_length_to_mask=100))
        assert masked.changes.added["TOKEN"] == "***"

    def test_markdown(self) -> None:
        md = render_plan_markdown(mask_plan(_sensitive_plan()))
        assert md.startswith("# varsync plan")
        assert "- **Project:** acme" in md
        assert "- **Scope:** shared" in md
        assert "| add | 1 |" not in md
        assert "| add | 2 |" in md
        assert "- `+` **TOKEN** = supe****word" in md
        assert "- `~` **PASSWORD**: oldp****ord1 -> newp****ord2" in md
        assert "## Ignored" in md
        assert "supersecretpassword" not in md

    def test_write_artifact_masks_values(self, tmp_path: Path) -> None:
        plan = _sensitive_plan()
        json_path, md_path = write_plan_artifact(plan, tmp_path / "plans")

        assert json_path.name == f"{plan.id}.json"
        assert md_path.name == f"{plan.id}.md"
        data = json.loads(json_path.read_text())
        assert data["changes"]["added"]["TOKEN"] == "supe****word"
        assert "supersecretpassword" not in md_path.read_text()

    def test_save_load_keeps_raw_values(self, tmp_path: Path) -> None:
        plan = _sensitive_plan()
        path = tmp_path / "plan.json"
        plan.save(path)

        loaded = Plan.load(path)
        assert loaded.model_dump() == plan.model_dump()
        assert loaded.changes.added["TOKEN"] == "supersecretpassword"
