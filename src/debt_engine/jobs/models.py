"""Models for background aggregation jobs."""

import enum
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from ..reconciliation.models import ReconciliationStep


class JobStatus(str, enum.Enum):
    """Lifecycle of an aggregation job."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class AggregationResult(BaseModel):
    """Counts reported by a completed job."""
    total_customers: int = 0
    new_count: int = 0
    updated_count: int = 0
    unchanged_count: int = 0
    duration_ms: int = 0


class AggregationJob(BaseModel):
    """State of one aggregation job as tracked in the job store."""
    job_id: str
    status: JobStatus = JobStatus.PENDING
    source: str
    current_step: str = Field(default=ReconciliationStep.QUEUED.value)
    progress_percent: int = Field(default=0, ge=0, le=100)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    result: Optional[AggregationResult] = None
    error_message: Optional[str] = None
    error_details: Optional[str] = None
