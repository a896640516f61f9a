"""Diff, plan, apply, batch and inventory engine."""

from varsync.engine.apply import Applier
from varsync.engine.batch import (
    BatchOperation,
    BatchResult,
    BatchStatus,
    format_batch_result,
    run_batch,
)
from varsync.engine.diff import diff, effective_diff, orient
from varsync.engine.inventory import (
    CoverageRow,
    InventoryReport,
    Lifecycle,
    MissingVar,
    OrphanedVar,
    ServiceSummary,
    build_inventory,
)
from varsync.engine.plan import Planner, build_plan, mask_plan, write_plan_artifact
from varsync.engine.types import (
    ApplyResult,
    ChangeSet,
    ConflictStrategy,
    KeyFailure,
    Plan,
    PlanOperation,
    PlanStatus,
    ReconcileOptions,
    ValueChange,
)

__all__ = [
    "Applier",
    "ApplyResult",
    "BatchOperation",
    "BatchResult",
    "BatchStatus",
    "ChangeSet",
    "ConflictStrategy",
    "CoverageRow",
    "InventoryReport",
    "KeyFailure",
    "Lifecycle",
    "MissingVar",
    "OrphanedVar",
    "Plan",
    "PlanOperation",
    "PlanStatus",
    "Planner",
    "ReconcileOptions",
    "ServiceSummary",
    "ValueChange",
    "build_inventory",
    "build_plan",
    "diff",
    "effective_diff",
    "format_batch_result",
    "mask_plan",
    "orient",
    "run_batch",
    "write_plan_artifact",
]
