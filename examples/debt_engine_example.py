"""
Example usage of the debt engine.

This module walks through a typical day: importing a bank statement,
entering a cash payment, and following the aggregation job the import
triggers until the customer debt summaries are updated.

Set DEBT_ENGINE_LEDGER_ENDPOINT, DEBT_ENGINE_LEDGER_USERNAME and
DEBT_ENGINE_LEDGER_PASSWORD before running it against the revenue service.
"""
import asyncio
import time
from decimal import Decimal

from debt_engine.database import DatabaseManager, DebtSummaryRepository, InitialDebtRepository
from debt_engine.identity import build_unique_code
from debt_engine.jobs import AggregationOrchestrator, JobStatus, ReconciliationRunner
from debt_engine.payments import PaymentCandidate, PaymentImporter

DATABASE_URL = "sqlite+aiosqlite:///./example_debt_engine.db"


# =============================================================================
# Payment identities
# =============================================================================
def show_identities():
    """
    Two payments of the same amount on the same day are told apart by the
    account balance after each of them.
    """
    first = build_unique_code("2025-05-02", Decimal("1410.00"), "405123456", Decimal("2322.46"))
    second = build_unique_code("2025-05-02", Decimal("1410.00"), "405123456", Decimal("6773.46"))
    print(f"First payment:  {first}")
    print(f"Second payment: {second}")


# =============================================================================
# Statement import and aggregation
# =============================================================================
async def import_statement(orchestrator: AggregationOrchestrator) -> str:
    """
    Import a bank statement; the importer queues an aggregation job once the
    new payments are stored.
    """
    manager = DatabaseManager(DATABASE_URL)
    await manager.initialize()
    try:
        async with manager.session() as session:
            await InitialDebtRepository(session).upsert(
                "405123456", Decimal("1500.00"), name="Buyer LLC",
            )
            await session.commit()

            importer = PaymentImporter(session, orchestrator)
            result = await importer.import_payments(
                [
                    PaymentCandidate(row_index=1, payment_date="2025-05-02", amount="1410.00",
                                     counterparty_id="405123456", post_balance="2322.46"),
                    PaymentCandidate(row_index=2, payment_date="2025-05-02", amount="1410.00",
                                     counterparty_id="405123456", post_balance="6773.46"),
                ],
                source="tbc",
            )
            print(f"Added {result.added_count}, duplicates {result.duplicate_count}, "
                  f"validation passed: {result.validation_passed}")

            await importer.add_manual_cash_payment("405123456", "75.50", "2025-05-04")
            return result.job_id
    finally:
        await manager.shutdown()


async def print_summaries():
    manager = DatabaseManager(DATABASE_URL)
    await manager.initialize()
    try:
        async with manager.session() as session:
            for summary in await DebtSummaryRepository(session).list_all():
                print(f"{summary.counterparty_id} {summary.counterparty_name}: "
                      f"debt {summary.current_debt}")
    finally:
        await manager.shutdown()


def follow_job(orchestrator: AggregationOrchestrator, job_id: str):
    """Poll a job until it finishes, printing each new step."""
    last_step = None
    while True:
        job = orchestrator.get_status(job_id)
        if job.current_step != last_step:
            print(f"[{job.progress_percent:3d}%] {job.current_step}")
            last_step = job.current_step
        if job.status in (JobStatus.COMPLETED, JobStatus.FAILED):
            return job
        time.sleep(0.5)


if __name__ == "__main__":
    show_identities()

    orchestrator = AggregationOrchestrator(ReconciliationRunner(database_url=DATABASE_URL))
    job_id = asyncio.run(import_statement(orchestrator))
    if job_id:
        job = follow_job(orchestrator, job_id)
        if job.status == JobStatus.FAILED:
            print(f"Aggregation failed: {job.error_message}")
        else:
            print(f"Aggregation result: {job.result.model_dump_json(indent=2)}")
    orchestrator.shutdown()

    asyncio.run(print_summaries())
