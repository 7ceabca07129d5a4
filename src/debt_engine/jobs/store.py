"""Thread-safe in-memory store of aggregation jobs."""

import logging
import threading
from datetime import datetime
from typing import Callable, Dict, List, Optional

from .models import AggregationJob, JobStatus

logger = logging.getLogger(__name__)


class JobNotFoundError(KeyError):
    """No job with the given id is stored."""


class JobStore:
    """Holds job records shared between request handlers and workers.

    Every read returns a copy; mutations go through ``update`` so a
    worker never races a reader on a half-written record. Terminal jobs
    are frozen.
    """

    def __init__(self):
        self._jobs: Dict[str, AggregationJob] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)

    def add(self, job: AggregationJob) -> None:
        with self._lock:
            self._jobs[job.job_id] = job.model_copy(deep=True)

    def get(self, job_id: str) -> Optional[AggregationJob]:
        """Return a snapshot of a job, or None if unknown."""
        with self._lock:
            job = self._jobs.get(job_id)
            return job.model_copy(deep=True) if job is not None else None

    def list(self) -> List[AggregationJob]:
        with self._lock:
            return [job.model_copy(deep=True) for job in self._jobs.values()]

    def update(self, job_id: str, mutate: Callable[[AggregationJob], None]) -> AggregationJob:
        """Apply ``mutate`` to a job under the store lock.

        Args:
            job_id: Job to change.
            mutate: Function editing the job in place.

        Returns:
            Snapshot of the job after the change. Terminal jobs are returned
            unchanged.

        Raises:
            JobNotFoundError: If the job is unknown.
        """
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise JobNotFoundError(job_id)
            if not job.status.is_terminal:
                mutate(job)
            return job.model_copy(deep=True)

    def advance(self, job_id: str, step: str, percent: int) -> AggregationJob:
        """Move a job to a new step; progress never goes backwards."""
        def apply(job: AggregationJob) -> None:
            job.current_step = step
            job.progress_percent = max(job.progress_percent, min(percent, 100))

        return self.update(job_id, apply)

    def evict_terminal(self, older_than: datetime) -> int:
        """Remove finished jobs completed before ``older_than``.

        Returns:
            Number of jobs removed.
        """
        with self._lock:
            expired = [
                job_id for job_id, job in self._jobs.items()
                if job.status.is_terminal
                and job.completed_at is not None
                and job.completed_at < older_than
            ]
            for job_id in expired:
                del self._jobs[job_id]
        if expired:
            logger.info(f"Evicted {len(expired)} finished aggregation jobs")
        return len(expired)
