#!/usr/bin/env python3
"""
Unit tests for batch-barrier job scheduling.
"""

import threading
import time

import pytest

from fetalmas.utils.commands import JobResult
from fetalmas.utils.scheduler import BatchScheduler, Job, batched


class EventLog:
    """Thread-safe record of job start/end events."""

    def __init__(self):
        self.events = []
        self._lock = threading.Lock()

    def job(self, name, delay=0.0, returncode=0):
        def run():
            with self._lock:
                self.events.append(('start', name))
            time.sleep(delay)
            with self._lock:
                self.events.append(('end', name))
            return JobResult(name=name, command=[name], returncode=returncode)
        return Job(name=name, run=run)


class TestBatched:

    def test_sizes(self):
        assert [len(b) for b in batched(list(range(5)), 2)] == [2, 2, 1]

    def test_invalid_size(self):
        with pytest.raises(ValueError):
            batched([1], 0)


class TestBatchScheduler:

    def test_batch_sizes(self):
        log = EventLog()
        scheduler = BatchScheduler(max_workers=2)
        results = scheduler.run_batches([log.job(f'j{i}') for i in range(5)])
        assert scheduler.batch_sizes == [2, 2, 1]
        assert [r.name for r in results] == ['j0', 'j1', 'j2', 'j3', 'j4']

    def test_single_worker(self):
        scheduler = BatchScheduler(max_workers=1)
        scheduler.run_batches([EventLog().job(f'j{i}') for i in range(3)])
        assert scheduler.batch_sizes == [1, 1, 1]

    def test_more_workers_than_jobs(self):
        scheduler = BatchScheduler(max_workers=8)
        scheduler.run_batches([EventLog().job(f'j{i}') for i in range(3)])
        assert scheduler.batch_sizes == [3]

    def test_no_jobs(self):
        scheduler = BatchScheduler(max_workers=4)
        assert scheduler.run_batches([]) == []
        assert scheduler.batch_sizes == []

    def test_barrier_between_batches(self):
        """No job of batch k+1 starts before every job of batch k has ended."""
        log = EventLog()
        # j0 is slow, so a refilling pool would start j2 while j0 still runs
        jobs = [log.job('j0', delay=0.2), log.job('j1'), log.job('j2'), log.job('j3')]
        BatchScheduler(max_workers=2).run_batches(jobs)

        position = {event: i for i, event in enumerate(log.events)}
        last_end_first_batch = max(position[('end', 'j0')], position[('end', 'j1')])
        first_start_second_batch = min(position[('start', 'j2')], position[('start', 'j3')])
        assert last_end_first_batch < first_start_second_batch

    def test_failed_jobs_do_not_stop_later_batches(self):
        log = EventLog()
        jobs = [log.job('j0', returncode=1), log.job('j1'), log.job('j2')]
        results = BatchScheduler(max_workers=2).run_batches(jobs)
        assert [r.returncode for r in results] == [1, 0, 0]

    def test_exception_becomes_failed_result(self):
        def boom():
            raise RuntimeError("worker crashed")

        results = BatchScheduler(max_workers=2).run_batches([Job('bad', boom), EventLog().job('good')])
        assert results[0].returncode == -1
        assert "worker crashed" in results[0].stdout
        assert results[1].ok

    def test_invalid_worker_count(self):
        with pytest.raises(ValueError):
            BatchScheduler(max_workers=0)
