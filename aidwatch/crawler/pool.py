"""Bounded-concurrency map over a list with failure isolation."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Callable, Generic, Sequence, TypeVar

from tqdm import tqdm


LOGGER = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


@dataclass(slots=True)
class TaskOutcome(Generic[R]):
    """Per-item result slot: a value, an error string, or a cancellation marker."""

    value: R | None = None
    error: str | None = None
    cancelled: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None and not self.cancelled


def map_pool(
    items: Sequence[T],
    concurrency: int,
    fn: Callable[[T], R],
    *,
    cancel_event: threading.Event | None = None,
    desc: str | None = None,
) -> list[TaskOutcome[R]]:
    """Run `fn` over `items` with at most `concurrency` worker threads.

    The output list is index-aligned with `items`. Every item is attempted
    exactly once unless `cancel_event` is set first, in which case unstarted
    items come back with `cancelled=True`. Exceptions from `fn` are captured
    into `TaskOutcome.error`; no retries happen here.
    """

    total = len(items)
    outcomes: list[TaskOutcome[R]] = [TaskOutcome(cancelled=True) for _ in range(total)]
    if total == 0:
        return outcomes

    workers = max(1, min(int(concurrency), total))
    index_lock = threading.Lock()
    next_index = 0

    progress = tqdm(total=total, desc=desc, unit="item") if desc else None
    progress_lock = threading.Lock()

    def claim() -> int | None:
        nonlocal next_index
        with index_lock:
            if cancel_event is not None and cancel_event.is_set():
                return None
            if next_index >= total:
                return None
            claimed = next_index
            next_index += 1
            return claimed

    def run() -> None:
        while True:
            idx = claim()
            if idx is None:
                return
            try:
                outcomes[idx] = TaskOutcome(value=fn(items[idx]))
            except Exception as exc:
                LOGGER.exception("Pool task failed index=%s", idx)
                outcomes[idx] = TaskOutcome(error=f"{exc.__class__.__name__}: {exc}")
            if progress is not None:
                with progress_lock:
                    progress.update(1)

    threads = [
        threading.Thread(target=run, name=f"pool-worker-{worker_idx}", daemon=True)
        for worker_idx in range(workers)
    ]
    try:
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
    finally:
        if progress is not None:
            progress.close()

    return outcomes


__all__ = ["TaskOutcome", "map_pool"]
