"""Background scheduling of aggregation jobs with progress tracking."""

import logging
import threading
import time
import traceback
import uuid
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta
from typing import Optional

from ..config import Settings, get_settings
from ..exceptions import JobQueueFullError, ValidationError
from ..reconciliation import ReconciliationStep
from .models import AggregationJob, AggregationResult, JobStatus
from .runner import JobRunner, ReconciliationRunner
from .store import JobNotFoundError, JobStore

logger = logging.getLogger(__name__)


class AggregationOrchestrator:
    """Schedules reconciliation runs on a bounded worker pool.

    At most ``max_workers`` runs execute at once and ``queue_capacity``
    more may wait. Beyond that ``trigger`` refuses new work with
    JobQueueFullError. Runs are independent; two triggers in quick
    succession produce two full runs.
    """

    def __init__(
        self,
        runner: JobRunner,
        store: Optional[JobStore] = None,
        max_workers: int = 5,
        queue_capacity: int = 25,
    ):
        """Initialize the orchestrator.

        Args:
            runner: Callable executing one reconciliation pass.
            store: Job store; a private one is created if omitted.
            max_workers: Concurrent runs.
            queue_capacity: Runs allowed to wait for a worker.
        """
        if max_workers < 1:
            raise ValueError("max_workers must be positive")
        self.runner = runner
        self.store = store or JobStore()
        self.max_workers = max_workers
        self.queue_capacity = max(0, queue_capacity)
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="aggregation",
        )
        self._capacity = threading.BoundedSemaphore(max_workers + self.queue_capacity)

    @classmethod
    def from_settings(
        cls,
        settings: Optional[Settings] = None,
        runner: Optional[JobRunner] = None,
        store: Optional[JobStore] = None,
    ) -> "AggregationOrchestrator":
        """Build an orchestrator sized from application settings."""
        settings = settings or get_settings()
        return cls(
            runner=runner or ReconciliationRunner(
                database_url=settings.database_url,
                cutoff_date=settings.cutoff_date,
            ),
            store=store,
            max_workers=settings.job_max_workers,
            queue_capacity=settings.job_queue_capacity,
        )

    def trigger(self, source: str) -> str:
        """Queue a reconciliation run and return its job id immediately.

        Args:
            source: What caused the run, e.g. ``excel_upload``.

        Returns:
            Id of the new PENDING job.

        Raises:
            ValidationError: If ``source`` is blank.
            JobQueueFullError: If the pool and its queue are full. No job
                is recorded in that case.
        """
        if source is None or not str(source).strip():
            raise ValidationError("Trigger source is required", field="source")
        source = str(source).strip()

        if not self._capacity.acquire(blocking=False):
            logger.warning(f"Aggregation queue full, rejecting trigger from {source}")
            raise JobQueueFullError("Aggregation queue is full, retry later")

        job_id = str(uuid.uuid4())
        self.store.add(AggregationJob(job_id=job_id, source=source))
        try:
            future = self._executor.submit(self.execute, job_id, source)
        except RuntimeError:
            self._capacity.release()
            self._fail(job_id, "Job executor is shut down", traceback.format_exc())
            raise
        future.add_done_callback(lambda _: self._capacity.release())

        logger.info(f"[{job_id}] Queued aggregation job (source={source})")
        return job_id

    def execute(self, job_id: str, source: str) -> None:
        """Run a job to completion, recording the outcome in the store.

        Never raises; failures end up as a FAILED job.
        """
        started = time.monotonic()

        def start(job: AggregationJob) -> None:
            job.status = JobStatus.RUNNING
            job.started_at = datetime.utcnow()

        try:
            self.store.update(job_id, start)
        except JobNotFoundError:
            logger.warning(f"[{job_id}] Job is no longer tracked, skipping run")
            return
        logger.info(f"[{job_id}] Aggregation started")

        def progress(step: ReconciliationStep) -> None:
            self.store.advance(job_id, step.value, step.percent)
            logger.debug(f"[{job_id}] {step.value} ({step.percent}%)")

        try:
            outcome = self.runner(source, progress)
        except Exception as e:
            logger.exception(f"[{job_id}] Aggregation failed: {e}")
            self._fail(job_id, str(e) or type(e).__name__, traceback.format_exc())
            return

        result = AggregationResult(
            total_customers=outcome.total_customers,
            new_count=outcome.new_count,
            updated_count=outcome.updated_count,
            unchanged_count=outcome.unchanged_count,
            duration_ms=int((time.monotonic() - started) * 1000),
        )

        def complete(job: AggregationJob) -> None:
            job.status = JobStatus.COMPLETED
            job.current_step = ReconciliationStep.COMPLETED.value
            job.progress_percent = ReconciliationStep.COMPLETED.percent
            job.completed_at = datetime.utcnow()
            job.result = result

        self.store.update(job_id, complete)
        logger.info(
            f"[{job_id}] Aggregation completed in {result.duration_ms}ms: "
            f"{result.total_customers} customers, {result.new_count} new, "
            f"{result.updated_count} updated, {result.unchanged_count} unchanged"
        )

    def _fail(self, job_id: str, message: str, details: str) -> None:
        def fail(job: AggregationJob) -> None:
            job.status = JobStatus.FAILED
            job.completed_at = datetime.utcnow()
            job.error_message = message
            job.error_details = details

        self.store.update(job_id, fail)

    def get_status(self, job_id: str) -> Optional[AggregationJob]:
        """Return a snapshot of a job, or None if unknown or evicted."""
        return self.store.get(job_id)

    def cleanup(self, max_age: timedelta) -> int:
        """Evict finished jobs that completed more than ``max_age`` ago."""
        return self.store.evict_terminal(datetime.utcnow() - max_age)

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting work and optionally wait for running jobs."""
        self._executor.shutdown(wait=wait)
