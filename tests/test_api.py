"""Tests for the aggregation and customer debt HTTP endpoints."""

import asyncio
import threading
import time
from datetime import date, datetime
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from debt_engine.api import create_app, get_today
from debt_engine.database import DatabaseManager, DebtSummaryRepository
from debt_engine.jobs import AggregationOrchestrator
from debt_engine.reconciliation import ReconciliationResult, ReconciliationStep


def fake_runner(source, progress):
    progress(ReconciliationStep.AGGREGATING)
    return ReconciliationResult(total_customers=2, new_count=2)


@pytest.fixture
def orchestrator():
    orchestrator = AggregationOrchestrator(fake_runner, max_workers=2, queue_capacity=2)
    yield orchestrator
    orchestrator.shutdown()


@pytest.fixture
def client(orchestrator):
    with TestClient(create_app(orchestrator)) as client:
        yield client


def poll_job(client, job_id, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        body = client.get(f"/aggregation/jobs/{job_id}").json()
        if body["status"] in ("completed", "failed"):
            return body
        time.sleep(0.01)
    raise AssertionError(f"Job {job_id} did not finish")


class TestTriggerEndpoint:
    """Tests for POST /aggregation/jobs."""

    def test_trigger_and_poll(self, client):
        """Test a triggered job is accepted and can be followed to completion."""
        response = client.post("/aggregation/jobs", json={"source": "manual_sync"})

        assert response.status_code == 202
        job_id = response.json()["job_id"]
        assert response.json()["status"] == "pending"

        job = poll_job(client, job_id)
        assert job["status"] == "completed"
        assert job["progress_percent"] == 100
        assert job["source"] == "manual_sync"
        assert job["result"]["total_customers"] == 2

    def test_default_source(self, client, orchestrator):
        """Test the source defaults to a manual sync."""
        response = client.post("/aggregation/jobs", json={})
        assert response.status_code == 202
        assert orchestrator.get_status(response.json()["job_id"]).source == "manual_sync"

    def test_blank_source(self, client):
        """Test a blank source is a bad request."""
        response = client.post("/aggregation/jobs", json={"source": "  "})
        assert response.status_code == 400

    def test_queue_full(self):
        """Test a saturated pool answers 503 with Retry-After."""
        release = threading.Event()

        def blocking_runner(source, progress):
            release.wait(5)
            return ReconciliationResult()

        orchestrator = AggregationOrchestrator(blocking_runner, max_workers=1, queue_capacity=0)
        try:
            with TestClient(create_app(orchestrator)) as client:
                assert client.post("/aggregation/jobs", json={"source": "a"}).status_code == 202
                response = client.post("/aggregation/jobs", json={"source": "b"})
                assert response.status_code == 503
                assert response.headers["Retry-After"] == "30"
        finally:
            release.set()
            orchestrator.shutdown()


class TestJobEndpoint:
    """Tests for GET /aggregation/jobs/{job_id}."""

    def test_unknown_job(self, client):
        """Test an unknown job is 404."""
        response = client.get("/aggregation/jobs/does-not-exist")
        assert response.status_code == 404


class TestHealthEndpoint:
    """Tests for GET /aggregation/health."""

    def test_health(self, client):
        """Test pool sizing is reported."""
        response = client.get("/aggregation/health")
        assert response.status_code == 200
        assert response.json() == {
            "status": "ok",
            "max_workers": 2,
            "queue_capacity": 2,
            "tracked_jobs": 0,
        }


TODAY = date(2025, 6, 1)


def summary_row(counterparty_id, current_debt, last_payment_date):
    return dict(
        counterparty_id=counterparty_id,
        counterparty_name=f"Customer {counterparty_id}",
        total_sales=Decimal(current_debt),
        sale_count=1,
        last_sale_date=date(2025, 5, 1),
        total_payments=Decimal("0"),
        payment_count=0 if last_payment_date is None else 1,
        last_payment_date=last_payment_date,
        total_cash_payments=Decimal("0"),
        cash_payment_count=0,
        starting_debt=Decimal("0"),
        starting_debt_date=None,
        current_debt=Decimal(current_debt),
        last_updated=datetime(2025, 6, 1, 8, 0),
        update_source="manual_sync",
    )


@pytest.fixture
def customers_client(orchestrator, file_database_url):
    async def seed():
        manager = DatabaseManager(file_database_url)
        await manager.initialize()
        async with manager.session() as session:
            await DebtSummaryRepository(session).upsert_all([
                summary_row("A", "100.00", date(2025, 5, 25)),
                summary_row("B", "250.50", date(2025, 5, 18)),
                summary_row("C", "75.00", date(2025, 5, 2)),
                summary_row("D", "10.00", None),
            ])
        await manager.shutdown()

    asyncio.run(seed())
    app = create_app(orchestrator, database_url=file_database_url)
    app.dependency_overrides[get_today] = lambda: TODAY
    with TestClient(app) as client:
        yield client


class TestCustomerDebtEndpoints:
    """Tests for GET /customers/debts."""

    def test_list(self, customers_client):
        """Test every stored summary is listed with its payment status."""
        response = customers_client.get("/customers/debts")

        assert response.status_code == 200
        body = response.json()
        assert [c["counterparty_id"] for c in body] == ["A", "B", "C", "D"]
        assert [c["payment_status"] for c in body] == ["none", "yellow", "red", "none"]
        assert [c["days_since_last_payment"] for c in body] == [7, 14, 30, None]

    def test_get_one(self, customers_client):
        """Test a single customer's summary is returned."""
        response = customers_client.get("/customers/debts/B")

        assert response.status_code == 200
        body = response.json()
        assert body["counterparty_name"] == "Customer B"
        assert Decimal(body["current_debt"]) == Decimal("250.50")
        assert body["last_payment_date"] == "2025-05-18"
        assert body["payment_status"] == "yellow"

    def test_unknown_customer(self, customers_client):
        """Test a customer without a summary is 404."""
        response = customers_client.get("/customers/debts/missing")
        assert response.status_code == 404

    def test_empty_database(self, client):
        """Test the list is empty before any aggregation ran."""
        response = client.get("/customers/debts")
        assert response.status_code == 200
        assert response.json() == []
