"""
VDF Bounded Concurrency

``map_with_concurrency`` runs an async worker over a list with at most N
in flight. Results come back in input order; a worker exception is stored
as that item's result instead of tearing down the pool.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, Optional, Sequence, TypeVar

import structlog

log = structlog.get_logger(__name__)

T = TypeVar("T")
R = TypeVar("R")


@dataclass
class WorkerError:
    """Placeholder result for an item whose worker raised."""
    error: BaseException


@dataclass
class Settled(Generic[T, R]):
    index: int
    item: T
    result: Optional[R] = None
    error: Optional[BaseException] = None


async def map_with_concurrency(
    items: Sequence[T],
    concurrency: int,
    worker: Callable[[T], Awaitable[R]],
    on_settled: Optional[Callable[[Settled[T, R]], Any]] = None,
    should_stop: Optional[Callable[[], bool]] = None,
) -> list[Any]:
    """Run ``worker`` over ``items`` with bounded concurrency.

    Args:
        items: Inputs, processed in order.
        concurrency: Maximum workers in flight (at least 1).
        worker: Coroutine function applied to each item.
        on_settled: Called once per finished item, success or failure.
        should_stop: Checked before each new item; once true, no new items start
            and in-flight ones are allowed to finish.

    Returns:
        One entry per item: the worker's result, a WorkerError, or None for
        items never started because of ``should_stop``.
    """
    results: list[Any] = [None] * len(items)
    if not items:
        return results

    cursor = 0
    stopped = False

    async def run_one() -> None:
        nonlocal cursor, stopped
        while cursor < len(items) and not stopped:
            if should_stop is not None and should_stop():
                stopped = True
                break
            index = cursor
            cursor += 1
            item = items[index]
            settled: Settled[T, R] = Settled(index=index, item=item)
            try:
                settled.result = await worker(item)
                results[index] = settled.result
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                settled.error = exc
                results[index] = WorkerError(exc)
            if on_settled is not None:
                try:
                    on_settled(settled)
                except Exception as exc:
                    log.warning("concurrency.on_settled_failed", index=index, error=str(exc))

    n_workers = max(1, min(len(items), int(concurrency or 1)))
    await asyncio.gather(*(run_one() for _ in range(n_workers)))
    return results
