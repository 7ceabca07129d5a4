"""HTTP endpoints for aggregation jobs and customer debt summaries."""

import logging
from contextlib import asynccontextmanager
from datetime import date, timedelta
from typing import List, Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from .config import get_settings
from .database import DebtSummary, DebtSummaryRepository, close_db, get_db, init_db
from .exceptions import JobQueueFullError, ValidationError
from .jobs import AggregationJob, AggregationOrchestrator
from .reconciliation import (
    CustomerDebtSummary,
    PaymentStatus,
    days_since_last_payment,
    payment_status,
)

logger = logging.getLogger(__name__)

# Seconds a client should wait before re-triggering on a full queue
RETRY_AFTER_SECONDS = 30

router = APIRouter(prefix="/aggregation", tags=["aggregation"])
customers_router = APIRouter(prefix="/customers", tags=["customers"])


class TriggerRequestBody(BaseModel):
    """Request body for starting an aggregation job."""
    source: str = Field(default="manual_sync", description="What caused the run")


class TriggerResponse(BaseModel):
    job_id: str
    status: str = "pending"


def get_orchestrator(request: Request) -> AggregationOrchestrator:
    return request.app.state.orchestrator


@router.post("/jobs", response_model=TriggerResponse, status_code=202)
async def trigger_aggregation(
    body: TriggerRequestBody,
    orchestrator: AggregationOrchestrator = Depends(get_orchestrator),
):
    """
    Queue a customer debt aggregation run.

    Returns at once with the job id; poll the job endpoint for progress.
    """
    orchestrator.cleanup(timedelta(minutes=get_settings().job_retention_minutes))
    try:
        job_id = orchestrator.trigger(body.source)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=e.message)
    except JobQueueFullError as e:
        raise HTTPException(
            status_code=503,
            detail=e.message,
            headers={"Retry-After": str(RETRY_AFTER_SECONDS)},
        )
    return TriggerResponse(job_id=job_id)


@router.get("/jobs/{job_id}", response_model=AggregationJob)
async def get_aggregation_job(
    job_id: str,
    orchestrator: AggregationOrchestrator = Depends(get_orchestrator),
):
    """Get the status, progress and outcome of an aggregation job."""
    job = orchestrator.get_status(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail=f"Aggregation job {job_id} not found")
    return job


@router.get("/health")
async def aggregation_health(
    orchestrator: AggregationOrchestrator = Depends(get_orchestrator),
):
    """Report pool sizing and the number of tracked jobs."""
    return {
        "status": "ok",
        "max_workers": orchestrator.max_workers,
        "queue_capacity": orchestrator.queue_capacity,
        "tracked_jobs": len(orchestrator.store),
    }


class CustomerDebtResponse(CustomerDebtSummary):
    """Stored debt summary of a customer with its payment status."""
    days_since_last_payment: Optional[int] = None
    payment_status: PaymentStatus = PaymentStatus.NONE


def get_today() -> date:
    return date.today()


def _to_response(row: DebtSummary, today: date) -> CustomerDebtResponse:
    summary = CustomerDebtSummary.model_validate(row)
    return CustomerDebtResponse(
        **summary.model_dump(),
        days_since_last_payment=days_since_last_payment(summary.last_payment_date, today),
        payment_status=payment_status(summary.last_payment_date, today),
    )


@customers_router.get("/debts", response_model=List[CustomerDebtResponse])
async def list_customer_debts(
    session: AsyncSession = Depends(get_db),
    today: date = Depends(get_today),
):
    """List the stored debt summary of every customer, ordered by id."""
    rows = await DebtSummaryRepository(session).list_all()
    return [_to_response(row, today) for row in rows]


@customers_router.get("/debts/{counterparty_id}", response_model=CustomerDebtResponse)
async def get_customer_debt(
    counterparty_id: str,
    session: AsyncSession = Depends(get_db),
    today: date = Depends(get_today),
):
    """Get the stored debt summary of one customer."""
    row = await DebtSummaryRepository(session).get(counterparty_id)
    if row is None:
        raise HTTPException(status_code=404, detail=f"No debt summary for customer {counterparty_id}")
    return _to_response(row, today)


def create_app(
    orchestrator: Optional[AggregationOrchestrator] = None,
    database_url: Optional[str] = None,
) -> FastAPI:
    """Build the application around an orchestrator.

    The application database is opened on startup and closed on shutdown;
    the orchestrator stops accepting work on shutdown.

    Args:
        orchestrator: Orchestrator to serve; one is built from settings if omitted.
        database_url: Database holding the debt summaries; resolved from
            settings if omitted.

    Returns:
        FastAPI application.
    """
    orchestrator = orchestrator or AggregationOrchestrator.from_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await init_db(database_url)
        try:
            yield
        finally:
            orchestrator.shutdown(wait=False)
            await close_db()

    app = FastAPI(title="Customer Debt Engine", lifespan=lifespan)
    app.state.orchestrator = orchestrator
    app.include_router(router)
    app.include_router(customers_router)
    return app
