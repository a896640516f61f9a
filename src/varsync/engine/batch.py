"""Batch executor: runs one operation per item with bounded concurrency."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from enum import Enum
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


class BatchStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class BatchOperation(Generic[T, R]):
    """Outcome for one input item."""

    item: T
    status: BatchStatus = BatchStatus.SKIPPED
    result: R | None = None
    error: str | None = None
    exception: BaseException | None = field(default=None, repr=False)
    duration: float = 0.0


@dataclass
class BatchResult(Generic[T, R]):
    operations: list[BatchOperation[T, R]] = field(default_factory=list)
    duration: float = 0.0

    @property
    def total(self) -> int:
        return len(self.operations)

    @property
    def successful(self) -> int:
        return sum(1 for op in self.operations if op.status is BatchStatus.SUCCESS)

    @property
    def failed(self) -> int:
        return sum(1 for op in self.operations if op.status is BatchStatus.FAILED)

    @property
    def skipped(self) -> int:
        return sum(1 for op in self.operations if op.status is BatchStatus.SKIPPED)

    @property
    def ok(self) -> bool:
        return self.failed == 0 and self.skipped == 0

    def failures(self) -> list[BatchOperation[T, R]]:
        return [op for op in self.operations if op.status is BatchStatus.FAILED]


ProgressCallback = Callable[[int, int, BatchOperation], None]


def _run_one(item: T, op: Callable[[T], R]) -> BatchOperation[T, R]:
    start = time.monotonic()
    try:
        value = op(item)
    except Exception as exc:
        logger.warning("Batch item %s failed: %s", item, exc)
        return BatchOperation(
            item=item,
            status=BatchStatus.FAILED,
            error=str(exc),
            exception=exc,
            duration=time.monotonic() - start,
        )
    return BatchOperation(
        item=item, status=BatchStatus.SUCCESS, result=value, duration=time.monotonic() - start
    )


def run_batch(
    items: Sequence[T],
    op: Callable[[T], R],
    *,
    concurrency: int = 1,
    stop_on_error: bool = False,
    on_progress: ProgressCallback | None = None,
) -> BatchResult[T, R]:
    """Run *op* for every item and aggregate the outcomes.

    With ``concurrency <= 1`` items run one after another in input order.
    Otherwise at most *concurrency* items are in flight; completion order is
    not guaranteed but ``operations`` always holds one entry per input item,
    in input order.

    Item failures are recorded, never raised. With *stop_on_error*, nothing
    new is dispatched once a failure is observed; in-flight items still
    finish, and items never dispatched are recorded as ``skipped``.

    *on_progress* is called as ``(completed, total, operation)`` after each
    item finishes, from the calling thread.
    """
    start = time.monotonic()
    total = len(items)
    slots: list[BatchOperation[T, R]] = [BatchOperation(item=item) for item in items]
    completed = 0

    def record(index: int, outcome: BatchOperation[T, R]) -> None:
        nonlocal completed
        slots[index] = outcome
        completed += 1
        if on_progress:
            on_progress(completed, total, outcome)

    logger.info("Running batch of %d item(s), concurrency=%d", total, max(concurrency, 1))

    if concurrency <= 1:
        for index, item in enumerate(items):
            outcome = _run_one(item, op)
            record(index, outcome)
            if stop_on_error and outcome.status is BatchStatus.FAILED:
                break
    else:
        stop = False
        pending: dict[Future[BatchOperation[T, R]], int] = {}
        queue = iter(enumerate(items))
        with ThreadPoolExecutor(max_workers=concurrency) as pool:
            while True:
                while not stop and len(pending) < concurrency:
                    nxt = next(queue, None)
                    if nxt is None:
                        break
                    index, item = nxt
                    pending[pool.submit(_run_one, item, op)] = index
                if not pending:
                    break
                done, _ = wait(pending, return_when=FIRST_COMPLETED)
                for future in done:
                    outcome = future.result()
                    record(pending.pop(future), outcome)
                    if stop_on_error and outcome.status is BatchStatus.FAILED:
                        stop = True

    result = BatchResult(operations=slots, duration=time.monotonic() - start)
    logger.info(
        "Batch finished: %d succeeded, %d failed, %d skipped",
        result.successful,
        result.failed,
        result.skipped,
    )
    return result


def format_batch_result(
    result: BatchResult, *, label: Callable[[object], str] = str
) -> str:
    """Plain-text report: one line per item plus a totals line."""
    lines = []
    for op in result.operations:
        line = f"{op.status.value:<8} {label(op.item)}"
        if op.status is not BatchStatus.SKIPPED:
            line += f" ({op.duration:.2f}s)"
        if op.error:
            line += f": {op.error}"
        lines.append(line)
    lines.append(
        f"{result.total} total, {result.successful} succeeded, "
        f"{result.failed} failed, {result.skipped} skipped"
    )
    return "\n".join(lines)
