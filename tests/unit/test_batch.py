from __future__ import annotations

import threading
import time

from varsync.engine.batch import BatchStatus, format_batch_result, run_batch


def _flaky(fail: set[str]):
    calls: list[str] = []

    def op(item: str) -> str:
        calls.append(item)
        if item in fail:
            raise RuntimeError(f"{item} broke")
        return item.upper()

    return op, calls


class TestSequential:
    def test_all_succeed_in_order(self) -> None:
        op, calls = _flaky(set())
        result = run_batch(["s1", "s2", "s3"], op)

        assert calls == ["s1", "s2", "s3"]
        assert result.ok
        assert result.total == 3
        assert [o.result for o in result.operations] == ["S1", "S2", "S3"]
        assert all(o.duration >= 0 for o in result.operations)

    def test_failures_are_recorded_not_raised(self) -> None:
        op, calls = _flaky({"s2"})
        result = run_batch(["s1", "s2", "s3"], op)

        assert calls == ["s1", "s2", "s3"]
        assert (result.successful, result.failed, result.skipped) == (2, 1, 0)
        assert not result.ok
        failure = result.failures()[0]
        assert failure.item == "s2"
        assert failure.error == "s2 broke"
        assert isinstance(failure.exception, RuntimeError)

    def test_stop_on_error_skips_the_rest(self) -> None:
        op, calls = _flaky({"s2"})
        result = run_batch(["s1", "s2", "s3"], op, stop_on_error=True)

        assert calls == ["s1", "s2"]
        assert [o.status for o in result.operations] == [
            BatchStatus.SUCCESS,
            BatchStatus.FAILED,
            BatchStatus.SKIPPED,
        ]
        assert result.operations[2].item == "s3"
        assert result.total == 3

    def test_progress(self) -> None:
        op, _ = _flaky({"b"})
        seen: list[tuple[int, int, str, BatchStatus]] = []
        run_batch(
            ["a", "b"],
            op,
            on_progress=lambda done, total, o: seen.append((done, total, o.item, o.status)),
        )
        assert seen == [(1, 2, "a", BatchStatus.SUCCESS), (2, 2, "b", BatchStatus.FAILED)]

    def test_empty(self) -> None:
        result = run_batch([], lambda item: item)
        assert result.total == 0
        assert result.ok


class TestConcurrent:
    def test_bounded_concurrency(self) -> None:
        lock = threading.Lock()
        in_flight = 0
        peak = 0

        def op(item: int) -> int:
            nonlocal in_flight, peak
            with lock:
                in_flight += 1
                peak = max(peak, in_flight)
            time.sleep(0.02)
            with lock:
                in_flight -= 1
            return item * 2

        items = list(range(8))
        result = run_batch(items, op, concurrency=3)

        assert peak <= 3
        assert result.successful == 8
        # One entry per input, in input order
        assert [o.item for o in result.operations] == items
        assert [o.result for o in result.operations] == [i * 2 for i in items]

    def test_stop_on_error_stops_dispatch(self) -> None:
        calls: list[int] = []
        lock = threading.Lock()

        def op(item: int) -> int:
            with lock:
                calls.append(item)
            if item == 0:
                raise RuntimeError("first fails")
            time.sleep(0.05)
            return item

        result = run_batch(list(range(10)), op, concurrency=2, stop_on_error=True)

        assert result.failed == 1
        assert result.skipped > 0
        assert result.total == 10
        assert len(calls) < 10
        assert all(o.status is BatchStatus.SKIPPED for o in result.operations[len(calls) :])


def test_format_batch_result() -> None:
    op, _ = _flaky({"s2"})
    result = run_batch(["s1", "s2", "s3"], op, stop_on_error=True)

    text = format_batch_result(result, label=lambda item: f"service:{item}")
    lines = text.splitlines()

    assert lines[0].startswith("success  service:s1 (")
    assert lines[1].startswith("failed   service:s2 (")
    assert lines[1].endswith(": s2 broke")
    assert lines[2] == "skipped  service:s3"
    assert lines[-1] == "3 total, 1 succeeded, 1 failed, 1 skipped"
