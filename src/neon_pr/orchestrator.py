"""Bounded-concurrency fan-out for per-item workers.

``run_with_concurrency`` starts at most ``max_concurrent`` lanes.  Each
lane pulls the next item from one shared iterator, so items launch in
input order and a new item starts as soon as any lane frees up.  A
failing worker is logged and counted; it never cancels its siblings.
"""

from __future__ import annotations

import asyncio
import enum
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable, TypeVar

from .logging_utils import get_logger

log = get_logger("orchestrator")

T = TypeVar("T")


class WorkerOutcome(enum.Enum):
    DONE = "done"
    SKIPPED = "skipped"


@dataclass
class BatchResult:
    total: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0


async def run_with_concurrency(
    items: Iterable[T],
    worker: Callable[[T, int], Awaitable[Any]],
    max_concurrent: int,
) -> BatchResult:
    """Await ``worker(item, index)`` once per item with at most ``max_concurrent`` in flight.

    Returns only after every worker has settled.  A worker returning
    ``WorkerOutcome.SKIPPED`` is counted as skipped; any other return value
    counts as success; an exception counts as a failure.
    """
    limit = max(1, int(max_concurrent or 1))
    result = BatchResult()
    queue = enumerate(items)

    async def lane() -> None:
        # next() on the shared iterator is synchronous, so lanes never race for an item.
        for idx, item in queue:
            result.total += 1
            try:
                outcome = await worker(item, idx)
            except Exception as e:
                result.failed += 1
                log.warning("worker_failed idx=%d err=%s", idx, str(e), exc_info=True)
                continue
            if outcome is WorkerOutcome.SKIPPED:
                result.skipped += 1
            else:
                result.succeeded += 1

    await asyncio.gather(*(lane() for _ in range(limit)))
    log.info(
        "batch_settled total=%d ok=%d skipped=%d failed=%d limit=%d",
        result.total,
        result.succeeded,
        result.skipped,
        result.failed,
        limit,
    )
    return result
