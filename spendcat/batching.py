"""Batch fan-out for suggestion requests.

Rows are cut into batches of at most ``batch_size`` (:func:`chunked`) and each
batch is handed to a worker on a small thread pool (:func:`run_batches`). At
most ``concurrency`` batches are in flight. Results are collected in batch
order, and the first failing batch (in that order) cancels every batch that
has not started and re-raises its error.
"""

from __future__ import annotations

from collections import deque
from collections.abc import Callable, Iterator, Sequence
from concurrent.futures import Future, ThreadPoolExecutor
from typing import TypeVar

from .logging_setup import get_logger

ItemT = TypeVar("ItemT")
ResultT = TypeVar("ResultT")

_logger = get_logger("spendcat.batching")


def chunked(items: Sequence[ItemT], size: int) -> Iterator[list[ItemT]]:
    """Yield consecutive slices of ``items`` holding at most ``size`` elements."""

    if size < 1:
        raise ValueError("size must be a positive integer")
    for start in range(0, len(items), size):
        yield list(items[start : start + size])


def _cancel_all(pending: deque[Future[ResultT]]) -> None:
    for fut in pending:
        fut.cancel()
    pending.clear()


def run_batches(
    batches: Sequence[list[ItemT]],
    worker: Callable[[list[ItemT]], ResultT],
    *,
    concurrency: int,
) -> list[ResultT]:
    """Run ``worker`` over ``batches`` with at most ``concurrency`` in flight.

    With ``concurrency == 1`` (or a single batch) everything runs on the
    calling thread.
    """

    if not isinstance(concurrency, int) or concurrency < 1:
        raise ValueError("concurrency must be a positive integer")
    if concurrency == 1 or len(batches) <= 1:
        return [worker(batch) for batch in batches]

    workers = min(concurrency, len(batches))
    _logger.debug("batching:start batches=%d workers=%d", len(batches), workers)

    results: list[ResultT] = []
    pending: deque[Future[ResultT]] = deque()
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="spendcat-batch") as pool:

        def _collect_oldest() -> None:
            try:
                results.append(pending.popleft().result())
            except Exception:
                _cancel_all(pending)
                raise

        for batch in batches:
            if len(pending) >= workers:
                _collect_oldest()
            pending.append(pool.submit(worker, batch))
        while pending:
            _collect_oldest()

    return results


__all__ = ["chunked", "run_batches"]
