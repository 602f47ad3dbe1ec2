"""Tests for the bounded worker pool."""

import threading
import time

import pytest

from aidwatch.crawler.pool import map_pool


def test_concurrency_one_runs_in_submission_order():
    seen = []

    def record(item):
        seen.append(item)
        return item * 2

    outcomes = map_pool([3, 1, 2, 5, 4], 1, record)

    assert seen == [3, 1, 2, 5, 4]
    assert [outcome.value for outcome in outcomes] == [6, 2, 4, 10, 8]


@pytest.mark.parametrize("concurrency", [1, 2, 3, 8, 50])
def test_results_are_index_aligned_for_any_concurrency(concurrency):
    items = list(range(23))
    calls = []
    lock = threading.Lock()

    def slow_square(item):
        time.sleep(0.001 * (item % 3))
        with lock:
            calls.append(item)
        return item * item

    outcomes = map_pool(items, concurrency, slow_square)

    assert len(outcomes) == len(items)
    assert sorted(calls) == items
    assert [outcome.value for outcome in outcomes] == [item * item for item in items]


def test_concurrency_never_exceeded():
    active = 0
    peak = 0
    lock = threading.Lock()

    def task(_item):
        nonlocal active, peak
        with lock:
            active += 1
            peak = max(peak, active)
        time.sleep(0.01)
        with lock:
            active -= 1

    map_pool(list(range(12)), 3, task)
    assert peak <= 3


def test_failures_are_isolated():
    def maybe_fail(item):
        if item == 2:
            raise ValueError("boom")
        return item

    outcomes = map_pool([1, 2, 3], 2, maybe_fail)

    assert [outcome.ok for outcome in outcomes] == [True, False, True]
    assert outcomes[1].error == "ValueError: boom"
    assert outcomes[2].value == 3


def test_cancel_stops_issuing_new_tasks():
    cancel = threading.Event()
    started = []

    def task(item):
        started.append(item)
        if item == 1:
            cancel.set()
        return item

    outcomes = map_pool([0, 1, 2, 3], 1, task, cancel_event=cancel)

    assert started == [0, 1]
    assert [outcome.cancelled for outcome in outcomes] == [False, False, True, True]


def test_empty_input():
    assert map_pool([], 4, lambda item: item) == []
