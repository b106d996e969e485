"""
Fixed-size worker pool used by every data-parallel stage.

Work is split into contiguous pixel ranges or handed out per channel. Results
always come back in partition order, never completion order, so reductions over
them are reproducible for a given worker count. Each call returns only after all
of its tasks have finished, which is the barrier between pipeline stages.
"""

import logging
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


def split_range(total: int, parts: int) -> list[tuple[int, int]]:
    """Split ``[0, total)`` into at most ``parts`` contiguous, nearly equal ranges."""
    if total <= 0:
        return []
    parts = max(1, min(parts, total))
    base, extra = divmod(total, parts)
    ranges = []
    start = 0
    for i in range(parts):
        stop = start + base + (1 if i < extra else 0)
        ranges.append((start, stop))
        start = stop
    return ranges


class WorkScheduler:
    """Runs CPU-bound numpy work on a fixed number of threads."""

    def __init__(self, workers: int = 1):
        if workers < 1:
            raise ValueError(f"Worker count must be >= 1, got {workers}")
        self.workers = int(workers)
        self._executor: ThreadPoolExecutor | None = None

    def __enter__(self) -> "WorkScheduler":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.shutdown()

    def start(self):
        if self._executor is None and self.workers > 1:
            self._executor = ThreadPoolExecutor(
                max_workers=self.workers, thread_name_prefix="texgauss"
            )
            logger.debug(f"Started worker pool with {self.workers} threads")

    def shutdown(self):
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    def _run(self, func: Callable[..., T], arg_lists: Sequence[tuple]) -> list[T]:
        if self.workers == 1 or len(arg_lists) <= 1:
            return [func(*args) for args in arg_lists]

        owns_executor = self._executor is None
        if owns_executor:
            self.start()
        try:
            futures = [self._executor.submit(func, *args) for args in arg_lists]
            # Collect in submission order; result() re-raises worker exceptions.
            return [future.result() for future in futures]
        finally:
            if owns_executor:
                self.shutdown()

    def map_ranges(
        self, func: Callable[[int, int], T], total: int, parts: int | None = None
    ) -> list[T]:
        """
        Call ``func(start, stop)`` for each partition of ``[0, total)``.

        Args:
            func: Worker function receiving a half-open index range
            total: Number of items (pixels) to cover
            parts: Number of partitions (default: worker count)

        Returns:
            Results in partition order
        """
        ranges = split_range(total, parts or self.workers)
        return self._run(func, ranges)

    def map_items(self, func: Callable[..., T], items: Sequence[Any]) -> list[T]:
        """Call ``func(index, item)`` for every item, one task per item."""
        return self._run(func, [(i, item) for i, item in enumerate(items)])
