"""Cron-driven loop around a pipeline run."""

from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import Callable

from croniter import croniter

from .config import ConfigError
from .types import utc_now


LOGGER = logging.getLogger(__name__)


def validate_cron(expression: str) -> str:
    expression = (expression or "").strip()
    if not expression:
        raise ConfigError("cron expression is empty")
    if not croniter.is_valid(expression):
        raise ConfigError(f"Invalid cron expression: {expression!r}")
    return expression


class CronScheduler:
    """Run `job` on every tick of `expression` until `stop_event` is set.

    Ticks never overlap: the next fire time is computed after the previous
    run returns, so a slow run skips the ticks it spanned.
    """

    def __init__(
        self,
        expression: str,
        job: Callable[[], object],
        stop_event: threading.Event | None = None,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.expression = validate_cron(expression)
        self.job = job
        self.stop_event = stop_event or threading.Event()
        self._clock = clock
        self.runs = 0
        self.failures = 0

    def next_fire_time(self, base: datetime | None = None) -> datetime:
        return croniter(self.expression, base or self._clock()).get_next(datetime)

    def run_forever(self) -> None:
        LOGGER.info("scheduler: started cron=%r", self.expression)
        while not self.stop_event.is_set():
            now = self._clock()
            fire_at = self.next_fire_time(now)
            delay = max(0.0, (fire_at - now).total_seconds())
            LOGGER.debug("scheduler: next tick at=%s in_seconds=%.1f", fire_at.isoformat(), delay)
            if self.stop_event.wait(delay):
                break
            self.tick()
        LOGGER.info("scheduler: stopped runs=%s failures=%s", self.runs, self.failures)

    def tick(self) -> None:
        LOGGER.info("scheduler: tick at=%s", self._clock().isoformat())
        self.runs += 1
        try:
            self.job()
        except Exception:
            self.failures += 1
            LOGGER.exception("scheduler: tick failed")

    def stop(self) -> None:
        self.stop_event.set()


__all__ = ["CronScheduler", "validate_cron"]
