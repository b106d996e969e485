import threading

import pytest

from texgauss.scheduler import WorkScheduler, split_range


class TestSplitRange:
    def test_covers_range_contiguously(self):
        ranges = split_range(10, 3)
        assert ranges == [(0, 4), (4, 7), (7, 10)]

    def test_never_more_parts_than_items(self):
        assert split_range(2, 8) == [(0, 1), (1, 2)]

    def test_empty(self):
        assert split_range(0, 4) == []


class TestWorkScheduler:
    def test_invalid_worker_count(self):
        with pytest.raises(ValueError):
            WorkScheduler(0)

    def test_results_in_partition_order(self):
        with WorkScheduler(4) as scheduler:
            results = scheduler.map_ranges(lambda start, stop: (start, stop), 100)
        assert results == split_range(100, 4)

    def test_map_items_passes_index(self):
        scheduler = WorkScheduler(3)
        results = scheduler.map_items(lambda i, item: (i, item * 2), ["a", "b", "c"])
        assert results == [(0, "aa"), (1, "bb"), (2, "cc")]

    def test_runs_on_multiple_threads(self):
        seen = set()
        barrier = threading.Barrier(2, timeout=5)

        def work(start, stop):
            seen.add(threading.get_ident())
            barrier.wait()
            return stop - start

        with WorkScheduler(2) as scheduler:
            assert sum(scheduler.map_ranges(work, 10)) == 10
        assert len(seen) == 2

    def test_single_worker_runs_inline(self):
        caller = threading.get_ident()
        idents = WorkScheduler(1).map_ranges(lambda a, b: threading.get_ident(), 10)
        assert idents == [caller]

    def test_worker_exception_propagates(self):
        def work(start, stop):
            if start > 0:
                raise RuntimeError("boom")
            return start

        with pytest.raises(RuntimeError, match="boom"):
            WorkScheduler(3).map_ranges(work, 9)
