"""Tests for the bounded-concurrency batch runner."""

import asyncio

import pytest

pytestmark = pytest.mark.unit

from martlink.services.link.batch import BatchResult, LinkTask, run_with_concurrency


def make_tasks(codes: int, creatives: int) -> list[LinkTask]:
    return [
        LinkTask(mart_code=f"mart{c}", ad_creative=f"creative{k}")
        for c in range(codes)
        for k in range(creatives)
    ]


class TrackingWorker:
    """Worker that records calls and peak parallelism."""

    def __init__(self, fail_on: set[LinkTask] | None = None):
        self.calls: list[LinkTask] = []
        self.in_flight = 0
        self.peak = 0
        self.fail_on = fail_on or set()

    async def __call__(self, task: LinkTask) -> LinkTask:
        self.calls.append(task)
        self.in_flight += 1
        self.peak = max(self.peak, self.in_flight)
        try:
            await asyncio.sleep(0)
            await asyncio.sleep(0)
            if task in self.fail_on:
                raise RuntimeError(f"boom {task.mart_code}")
            return task
        finally:
            self.in_flight -= 1


class TestRunWithConcurrency:
    """Tests for run_with_concurrency."""

    @pytest.mark.parametrize("codes,creatives,limit", [(1, 1, 4), (3, 2, 4), (5, 7, 3), (10, 12, 4)])
    def test_every_task_runs_exactly_once(self, codes, creatives, limit):
        """Each task is handed to the worker exactly once."""
        tasks = make_tasks(codes, creatives)
        worker = TrackingWorker()

        result = asyncio.run(run_with_concurrency(tasks, worker, limit))

        assert sorted(worker.calls, key=repr) == sorted(tasks, key=repr)
        assert len(result.created) + len(result.errors) == len(tasks)
        assert len(result.created) == codes * creatives

    def test_parallelism_bounded_by_limit(self):
        """No more than the limit of workers are in flight."""
        worker = TrackingWorker()
        asyncio.run(run_with_concurrency(make_tasks(6, 5), worker, 4))
        assert worker.peak == 4

    def test_limit_larger_than_task_count(self):
        """A limit above the number of tasks still processes each task once."""
        tasks = make_tasks(2, 1)
        worker = TrackingWorker()

        result = asyncio.run(run_with_concurrency(tasks, worker, 50))

        assert len(worker.calls) == 2
        assert len(result.created) == 2
        assert worker.peak <= 2

    @pytest.mark.parametrize("limit", [0, -3])
    def test_non_positive_limit_runs_sequentially(self, limit):
        """Limits below one are clamped to a single worker."""
        tasks = make_tasks(2, 2)
        worker = TrackingWorker()

        result = asyncio.run(run_with_concurrency(tasks, worker, limit))

        assert len(result.created) == 4
        assert worker.peak == 1
        assert worker.calls == tasks

    def test_failing_task_recorded_as_error(self):
        """One failing task yields one error and does not stop the others."""
        tasks = make_tasks(3, 3)
        bad = tasks[4]
        worker = TrackingWorker(fail_on={bad})

        result = asyncio.run(run_with_concurrency(tasks, worker, 4))

        assert len(result.created) == 8
        assert len(result.errors) == 1
        assert result.errors[0].task == bad
        assert result.errors[0].message == "boom mart1"
        assert bad not in result.created

    def test_error_without_message(self):
        """Exceptions with an empty message get a placeholder."""
        async def worker(task):
            raise ValueError()

        result = asyncio.run(run_with_concurrency(make_tasks(1, 1), worker, 1))
        assert result.errors[0].message == "unknown error"

    def test_empty_task_list(self):
        """No tasks means no worker calls and an empty result."""
        worker = TrackingWorker()

        result = asyncio.run(run_with_concurrency([], worker, 4))

        assert isinstance(result, BatchResult)
        assert result.created == []
        assert result.errors == []
        assert worker.calls == []
