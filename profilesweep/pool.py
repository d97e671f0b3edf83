"""Bounded thread pool that isolates task failures from their siblings."""

from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Generic, List, Sequence, TypeVar

from .config import DEFAULT_MAX_CONCURRENCY

logger = logging.getLogger("profilesweep.pool")

T = TypeVar("T")


class WorkerPool(Generic[T]):
    """Run independent tasks with at most ``max_concurrency`` in flight.

    Every submitted task yields exactly one result, returned in submission
    order. An exception escaping a task is handed to the ``on_error``
    callback, which turns it into that task's result; the other tasks are
    unaffected.
    """

    def __init__(self, max_concurrency: int = DEFAULT_MAX_CONCURRENCY, *, name: str = "profilesweep") -> None:
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self._max_concurrency = max_concurrency
        self._name = name

    @property
    def max_concurrency(self) -> int:
        return self._max_concurrency

    def dispatch(
        self,
        tasks: Sequence[Callable[[], T]],
        on_error: Callable[[int, Exception], T],
    ) -> List[T]:
        if not tasks:
            return []

        workers = min(self._max_concurrency, len(tasks))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix=self._name) as executor:
            futures = [executor.submit(task) for task in tasks]
            return [self._collect(index, future, on_error) for index, future in enumerate(futures)]

    def _collect(self, index: int, future: Future, on_error: Callable[[int, Exception], T]) -> T:
        try:
            return future.result()
        except Exception as exc:
            logger.exception("Task %s in pool %s raised an unexpected error", index, self._name)
            return on_error(index, exc)


__all__ = ["WorkerPool"]
