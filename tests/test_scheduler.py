"""Tests for the cron loop."""

import threading
from datetime import datetime, timezone

import pytest

from aidwatch.crawler.config import ConfigError
from aidwatch.crawler.scheduler import CronScheduler, validate_cron


@pytest.mark.parametrize("expression", ["", "   ", "every hour", "61 * * * *"])
def test_invalid_expressions(expression):
    with pytest.raises(ConfigError):
        validate_cron(expression)


def test_next_fire_time():
    scheduler = CronScheduler("*/15 * * * *", lambda: None)
    base = datetime(2024, 1, 15, 10, 7, tzinfo=timezone.utc)
    assert scheduler.next_fire_time(base) == datetime(2024, 1, 15, 10, 15, tzinfo=timezone.utc)


def test_failing_tick_is_counted_and_survived():
    calls = []

    def job():
        calls.append(1)
        if len(calls) == 1:
            raise RuntimeError("database unavailable")

    scheduler = CronScheduler("* * * * *", job)
    scheduler.tick()
    scheduler.tick()

    assert scheduler.runs == 2
    assert scheduler.failures == 1


def test_stopped_scheduler_never_runs_job():
    stop = threading.Event()
    stop.set()
    calls = []

    scheduler = CronScheduler("* * * * *", lambda: calls.append(1), stop)
    scheduler.run_forever()

    assert calls == []
    assert scheduler.runs == 0


def test_due_tick_runs_then_stop_ends_loop():
    stop = threading.Event()
    # Always one microsecond before a minute boundary so the wait is short.
    clock = lambda: datetime(2024, 1, 15, 10, 6, 59, 999999, tzinfo=timezone.utc)  # noqa: E731
    scheduler = CronScheduler("* * * * *", stop.set, stop, clock=clock)

    scheduler.run_forever()

    assert scheduler.runs == 1
    assert stop.is_set()
