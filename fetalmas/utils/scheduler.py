"""
Bounded batch scheduling of external jobs.

Jobs are launched in consecutive batches of at most ``max_workers``. Every job
of a batch runs concurrently, and the next batch is not submitted until all
jobs of the current one have terminated, whatever their exit status. Idle
workers are not refilled while a batch is still running.
"""

import logging
from concurrent.futures import ALL_COMPLETED, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Callable, List, Sequence

from fetalmas.utils.commands import JobResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Job:
    """One unit of work; ``run`` blocks until its external process exits."""
    name: str
    run: Callable[[], JobResult]


def batched(jobs: Sequence[Job], size: int) -> List[List[Job]]:
    if size < 1:
        raise ValueError(f"batch size must be a positive integer, got {size}")
    return [list(jobs[i:i + size]) for i in range(0, len(jobs), size)]


class BatchScheduler:
    """
    Fixed-size worker pool with batch-barrier submission.

    Parameters
    ----------
    max_workers : int
        Maximum number of jobs running at the same time

    Attributes
    ----------
    batch_sizes : list of int
        Size of every batch launched so far, in order
    """

    def __init__(self, max_workers: int):
        if max_workers < 1:
            raise ValueError(f"max_workers must be a positive integer, got {max_workers}")
        self.max_workers = max_workers
        self.batch_sizes: List[int] = []

    def run_batches(self, jobs: Sequence[Job]) -> List[JobResult]:
        """
        Run all jobs, one barrier-separated batch at a time.

        Returns
        -------
        list of JobResult
            One result per job, in submission order
        """
        results: List[JobResult] = []
        if not jobs:
            return results

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            for number, batch in enumerate(batched(jobs, self.max_workers), 1):
                logger.debug(f"  Batch {number}: {', '.join(job.name for job in batch)}")
                self.batch_sizes.append(len(batch))
                futures = [executor.submit(job.run) for job in batch]
                wait(futures, return_when=ALL_COMPLETED)
                for job, future in zip(batch, futures):
                    results.append(self._collect(job, future))

        return results

    @staticmethod
    def _collect(job: Job, future) -> JobResult:
        error = future.exception()
        if error is None:
            return future.result()
        logger.error(f"  {job.name} raised {type(error).__name__}: {error}")
        return JobResult(name=job.name, command=[], returncode=-1, stdout=str(error))
