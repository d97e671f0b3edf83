import sys
import threading
import time
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from profilesweep.models import ErrorKind, Outcome, TaskResult
from profilesweep.pool import WorkerPool


def _on_error(index: int, exc: Exception) -> TaskResult:
    return TaskResult.failure("ws01", f"task-{index}", str(exc), ErrorKind.DELETE_FAILED)


def _ok(name: str):
    return lambda: TaskResult.success("ws01", name, "done")


def test_results_follow_submission_order():
    def slow():
        time.sleep(0.05)
        return TaskResult.success("ws01", "slow", "done")

    results = WorkerPool(4).dispatch([slow, _ok("fast-1"), _ok("fast-2")], _on_error)

    assert [result.subject for result in results] == ["slow", "fast-1", "fast-2"]


def test_failing_task_does_not_abort_siblings():
    def broken():
        raise RuntimeError("boom")

    results = WorkerPool(2).dispatch([_ok("a"), broken, _ok("b")], _on_error)

    assert [result.outcome for result in results] == [Outcome.SUCCESS, Outcome.FAILURE, Outcome.SUCCESS]
    assert results[1].subject == "task-1"
    assert results[1].message == "boom"


def test_concurrency_never_exceeds_bound():
    lock = threading.Lock()
    active = 0
    peak = 0

    def task():
        nonlocal active, peak
        with lock:
            active += 1
            peak = max(peak, active)
        time.sleep(0.02)
        with lock:
            active -= 1
        return TaskResult.success("ws01", "x", "done")

    results = WorkerPool(3).dispatch([task] * 12, _on_error)

    assert len(results) == 12
    assert peak <= 3


def test_tasks_run_in_parallel_up_to_bound():
    barrier = threading.Barrier(3, timeout=5)

    def task():
        barrier.wait()
        return TaskResult.success("ws01", "x", "done")

    results = WorkerPool(3).dispatch([task, task, task], _on_error)

    assert all(result.ok for result in results)


def test_empty_dispatch_returns_empty_list():
    assert WorkerPool(1).dispatch([], _on_error) == []


def test_invalid_bound_is_rejected():
    with pytest.raises(ValueError):
        WorkerPool(0)
