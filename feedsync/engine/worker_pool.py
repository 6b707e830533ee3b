"""Fixed-size worker pool pulling work units from a shared cursor."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from threading import Lock
from typing import Callable, Generic, Sequence, TypeVar

T = TypeVar("T")
R = TypeVar("R")


class _Cursor:
    """Hand out each index in ``range(limit)`` exactly once."""

    def __init__(self, limit: int) -> None:
        self._limit = limit
        self._next = 0
        self._lock = Lock()

    def claim(self) -> int | None:
        with self._lock:
            if self._next >= self._limit:
                return None
            index = self._next
            self._next += 1
            return index


class WorkerPool(Generic[T, R]):
    """Run ``fn`` over a sequence with at most ``workers`` calls in flight.

    Each worker claims the next unclaimed index as soon as it finishes its
    previous unit, so a slow unit never holds up idle workers. Results land in
    per-index slots and are returned in input order.
    """

    def __init__(self, workers: int, name: str = "worker") -> None:
        if workers < 1:
            raise ValueError("workers must be >= 1")
        self.workers = workers
        self.name = name

    def map(self, items: Sequence[T], fn: Callable[[T, int], R]) -> list[R]:
        if not items:
            return []
        slots: list[R | None] = [None] * len(items)
        cursor = _Cursor(len(items))

        def _drain() -> None:
            while True:
                index = cursor.claim()
                if index is None:
                    return
                slots[index] = fn(items[index], index)

        worker_count = min(self.workers, len(items))
        with ThreadPoolExecutor(max_workers=worker_count, thread_name_prefix=self.name) as executor:
            futures = [executor.submit(_drain) for _ in range(worker_count)]
            for future in futures:
                future.result()
        return slots  # type: ignore[return-value]


__all__ = ["WorkerPool"]
