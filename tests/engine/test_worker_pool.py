from __future__ import annotations

import threading
import time

import pytest

from feedsync.config import FetchConfig
from feedsync.engine.fetcher import FetchScheduler, SourceFetchResult
from feedsync.engine.items import Source
from feedsync.engine.worker_pool import WorkerPool


class _Gauge:
    def __init__(self) -> None:
        self.active = 0
        self.peak = 0
        self._lock = threading.Lock()

    def __enter__(self) -> "_Gauge":
        with self._lock:
            self.active += 1
            self.peak = max(self.peak, self.active)
        return self

    def __exit__(self, *exc) -> None:
        with self._lock:
            self.active -= 1


def test_map_preserves_input_order() -> None:
    pool: WorkerPool[int, int] = WorkerPool(4)

    def _square(value: int, _index: int) -> int:
        time.sleep(0.001 * (10 - value))
        return value * value

    assert pool.map(list(range(10)), _square) == [n * n for n in range(10)]


def test_map_handles_empty_input() -> None:
    assert WorkerPool(3).map([], lambda item, index: item) == []


def test_pool_rejects_zero_workers() -> None:
    with pytest.raises(ValueError):
        WorkerPool(0)


def test_fetch_runs_exactly_concurrency_sources_at_once(monkeypatch: pytest.MonkeyPatch) -> None:
    scheduler = FetchScheduler(FetchConfig(concurrency=3))
    gauge = _Gauge()
    seen_threads: set[str] = set()
    # The first three fetches only return once all three are in flight together.
    opening = threading.Barrier(3, timeout=2)
    durations = [0.03, 0.001, 0.02, 0.005, 0.015, 0.0, 0.025, 0.002, 0.01, 0.004]

    def fake_fetch(source: Source):
        index = int(source.display_name)
        with gauge:
            seen_threads.add(threading.current_thread().name)
            if index < 3:
                opening.wait()
            time.sleep(durations[index])
        return []

    monkeypatch.setattr(scheduler, "fetch_source", fake_fetch)
    sources = [Source(identity=f"https://feeds.example/{n}.xml", display_name=str(n)) for n in range(10)]
    results = scheduler.fetch_all(sources)
    scheduler.close()

    assert len(results) == 10
    assert [result.failed for result in results] == [False] * 10
    assert gauge.peak == 3
    assert len(seen_threads) == 3


def test_slow_unit_does_not_hold_back_free_workers() -> None:
    fast_done = threading.Event()
    finished: list[int] = []
    lock = threading.Lock()

    def work(item: int, index: int) -> bool:
        if index == 0:
            # Every fast unit must finish on the other workers while this one runs.
            return fast_done.wait(timeout=2)
        time.sleep(0.002 * (index % 3))
        with lock:
            finished.append(index)
            if len(finished) == 9:
                fast_done.set()
        return True

    started = time.perf_counter()
    results = WorkerPool(3, name="reuse").map(list(range(10)), work)
    elapsed = time.perf_counter() - started

    assert results == [True] * 10
    assert sorted(finished) == list(range(1, 10))
    assert elapsed < 1.5


def test_fewer_sources_than_workers_uses_one_thread_per_source() -> None:
    names: set[str] = set()
    lock = threading.Lock()

    def record(item: int, index: int) -> int:
        with lock:
            names.add(threading.current_thread().name)
        time.sleep(0.01)
        return item

    WorkerPool(8, name="probe").map([1, 2], record)
    assert len(names) <= 2
