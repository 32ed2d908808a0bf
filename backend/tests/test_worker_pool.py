from __future__ import annotations

import threading
import time

import pytest

from radio.errors import PipelineCancelled
from radio.worker_pool import run_bounded


def test_never_exceeds_concurrency_limit():
    lock = threading.Lock()
    state = {"active": 0, "peak": 0}

    def work(i: int) -> int:
        with lock:
            state["active"] += 1
            state["peak"] = max(state["peak"], state["active"])
        time.sleep(0.01)
        with lock:
            state["active"] -= 1
        return i * 2

    results = run_bounded(list(range(20)), work, concurrency=3)
    assert state["peak"] <= 3
    assert [r.value for r in results] == [i * 2 for i in range(20)]


def test_results_keep_item_order():
    def work(i: int) -> int:
        time.sleep(0.001 * (10 - i))
        return i

    assert [r.value for r in run_bounded(list(range(10)), work, concurrency=10)] == list(range(10))


def test_failure_is_isolated_to_its_slot():
    def work(i: int) -> int:
        if i == 2:
            raise ValueError("bad item")
        return i

    results = run_bounded(list(range(5)), work, concurrency=2)
    assert [r.ok for r in results] == [True, True, False, True, True]
    assert isinstance(results[2].error, ValueError)


def test_fail_fast_stops_submitting():
    started: list[int] = []

    def work(i: int) -> int:
        started.append(i)
        if i == 0:
            raise ValueError("first")
        return i

    with pytest.raises(ValueError):
        run_bounded(list(range(10)), work, concurrency=1, fail_fast=True)
    assert started == [0]


def test_cancel_before_start_raises():
    cancel = threading.Event()
    cancel.set()
    with pytest.raises(PipelineCancelled):
        run_bounded([1, 2, 3], lambda i: i, concurrency=2, cancel_event=cancel)


def test_empty_input_and_bad_limit():
    assert run_bounded([], lambda i: i, concurrency=1) == []
    with pytest.raises(ValueError):
        run_bounded([1], lambda i: i, concurrency=0)
