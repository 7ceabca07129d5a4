"""Runs reconciliation passes on worker threads."""

import asyncio
import logging
from datetime import date
from typing import Callable, Optional

from ..database import DatabaseManager
from ..ledger import LedgerClient
from ..reconciliation import ProgressCallback, ReconciliationResult, ReconciliationService

logger = logging.getLogger(__name__)

# Signature the orchestrator expects from whatever executes a job
JobRunner = Callable[[str, ProgressCallback], ReconciliationResult]


class ReconciliationRunner:
    """Executes one reconciliation pass synchronously.

    Each call runs in a fresh event loop with its own engine, so it is
    safe to call from any worker thread. The pass commits on success and
    rolls back on failure.
    """

    def __init__(
        self,
        database_url: Optional[str] = None,
        ledger_client_factory: Optional[Callable[[], LedgerClient]] = None,
        cutoff_date: Optional[date] = None,
    ):
        """Initialize the runner.

        Args:
            database_url: Database to read payments from and write summaries to.
            ledger_client_factory: Builds a ledger client per run.
            cutoff_date: Overrides the configured cutoff.
        """
        self.database_url = database_url
        self.ledger_client_factory = ledger_client_factory or LedgerClient.from_settings
        self.cutoff_date = cutoff_date

    def __call__(self, source: str, progress: ProgressCallback) -> ReconciliationResult:
        return asyncio.run(self.run(source, progress))

    async def run(
        self,
        source: str,
        progress: Optional[ProgressCallback] = None,
    ) -> ReconciliationResult:
        """Run one pass in the current event loop."""
        manager = DatabaseManager(self.database_url)
        await manager.initialize(create=True)
        ledger_client = self.ledger_client_factory()
        try:
            async with manager.session() as session:
                service = ReconciliationService(
                    session, ledger_client, cutoff_date=self.cutoff_date,
                )
                return await service.run(source, progress)
        finally:
            ledger_client.close()
            await manager.shutdown()
