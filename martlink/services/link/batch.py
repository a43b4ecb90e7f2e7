"""Bounded-concurrency runner for bulk link creation."""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Generic, Sequence, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class LinkTask:
    """One (mart, creative) pair of a bulk request."""

    mart_code: str
    ad_creative: str


@dataclass
class BatchError(Generic[T]):
    task: T
    message: str


@dataclass
class BatchResult(Generic[T]):
    """Outcome of a batch. Order across workers is not deterministic."""

    created: list[Any] = field(default_factory=list)
    errors: list[BatchError[T]] = field(default_factory=list)


async def run_with_concurrency(
    tasks: Sequence[T],
    worker: Callable[[T], Awaitable[Any]],
    concurrency: int,
) -> BatchResult[T]:
    """
    Run ``worker`` once for every task with at most ``concurrency`` in flight.

    Workers share a single cursor. The cursor is read and advanced with no
    await in between, so under asyncio no task is claimed twice. An exception
    from ``worker`` is recorded against its task and does not stop the batch.

    Args:
        tasks: Tasks to run, claimed in order
        worker: Coroutine function called with one task
        concurrency: Requested parallelism, clamped to [1, len(tasks)]

    Returns:
        BatchResult with worker return values and per-task errors
    """
    result: BatchResult[T] = BatchResult()
    if not tasks:
        return result

    cursor = 0

    async def drain() -> None:
        nonlocal cursor
        while cursor < len(tasks):
            task = tasks[cursor]
            cursor += 1
            try:
                result.created.append(await worker(task))
            except Exception as e:
                logger.warning(f"Batch task {task!r} failed: {e}")
                result.errors.append(BatchError(task=task, message=str(e) or "unknown error"))

    workers = max(1, min(concurrency, len(tasks)))
    await asyncio.gather(*(drain() for _ in range(workers)))
    return result
