"""Background aggregation jobs.

Triggers return a job id at once; the reconciliation run happens on a
bounded worker pool and reports its progress into a shared job store.
"""

from .models import AggregationJob, AggregationResult, JobStatus
from .store import JobStore, JobNotFoundError
from .runner import JobRunner, ReconciliationRunner
from .orchestrator import AggregationOrchestrator

__all__ = [
    "AggregationJob",
    "AggregationResult",
    "JobStatus",
    "JobStore",
    "JobNotFoundError",
    "JobRunner",
    "ReconciliationRunner",
    "AggregationOrchestrator",
]
