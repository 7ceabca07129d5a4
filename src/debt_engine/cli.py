#!/usr/bin/env python3
"""Command-line interface for the debt engine.

Usage:
    debt-engine reconcile
    debt-engine reconcile --cutoff 2025-04-29 --output result.json
    debt-engine fetch --direction sale --start 2025-05-01 --end 2025-05-08
    debt-engine identity --date 2025-05-02 --amount 1410.00 --customer 405123456 --balance 2322.46
    debt-engine backfill --remove-duplicates
"""

import argparse
import asyncio
import json
import logging
import sys
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Optional

from .database import DatabaseManager
from .exceptions import DebtEngineError
from .identity import build_unique_code
from .jobs import ReconciliationRunner
from .ledger import LedgerClient, LedgerDirection
from .payments import PaymentImporter

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


def parse_day(value: str) -> date:
    """Parse a YYYY-MM-DD argument."""
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Expected YYYY-MM-DD, got {value!r}")


def parse_decimal(value: str) -> Decimal:
    try:
        return Decimal(value)
    except InvalidOperation:
        raise argparse.ArgumentTypeError(f"Expected a number, got {value!r}")


def _emit(payload, output_file: Optional[str]) -> None:
    text = json.dumps(payload, indent=2, default=str)
    if output_file:
        with open(output_file, "w") as f:
            f.write(text)
        logger.info(f"Output written to {output_file}")
    else:
        print(text)


def run_reconcile(
    database_url: Optional[str],
    cutoff: Optional[date],
    output_file: Optional[str],
) -> int:
    runner = ReconciliationRunner(database_url=database_url, cutoff_date=cutoff)
    result = asyncio.run(runner.run("manual_sync"))
    _emit(result.model_dump(mode="json"), output_file)
    return 0


def run_fetch(
    direction: LedgerDirection,
    start: date,
    end: date,
    output_file: Optional[str],
) -> int:
    with LedgerClient.from_settings() as client:
        documents = client.fetch(direction, start, end)
    _emit([d.model_dump(mode="json") for d in documents], output_file)
    return 0


async def _backfill(database_url: Optional[str], remove_duplicates: bool):
    manager = DatabaseManager(database_url)
    await manager.initialize()
    try:
        async with manager.session() as session:
            return await PaymentImporter(session).backfill_unique_codes(remove_duplicates)
    finally:
        await manager.shutdown()


def run_backfill(database_url: Optional[str], remove_duplicates: bool) -> int:
    result = asyncio.run(_backfill(database_url, remove_duplicates))
    _emit(result.model_dump(mode="json"), None)
    return 0


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI.

    Returns:
        Configured ArgumentParser.
    """
    parser = argparse.ArgumentParser(
        prog="debt-engine",
        description="Customer debt aggregation over ledger sales and bank payments.",
    )
    parser.add_argument(
        "--database-url",
        help="Database URL (default: DEBT_ENGINE_DATABASE_URL / DATABASE_URL)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    reconcile_parser = subparsers.add_parser(
        "reconcile",
        help="Run one aggregation pass and print its result",
    )
    reconcile_parser.add_argument(
        "--cutoff",
        type=parse_day,
        help="Cutoff date (default: configured cutoff)",
    )
    reconcile_parser.add_argument(
        "--output", "-o",
        help="Output file path (default: stdout)",
    )

    fetch_parser = subparsers.add_parser(
        "fetch",
        help="Fetch ledger documents for a date range",
    )
    fetch_parser.add_argument(
        "--direction", "-d",
        choices=[d.value for d in LedgerDirection],
        default=LedgerDirection.SALE.value,
    )
    fetch_parser.add_argument("--start", "-s", type=parse_day, required=True, help="First day (YYYY-MM-DD)")
    fetch_parser.add_argument("--end", "-e", type=parse_day, required=True, help="Day after the last (YYYY-MM-DD)")
    fetch_parser.add_argument("--output", "-o", help="Output file path (default: stdout)")

    identity_parser = subparsers.add_parser(
        "identity",
        help="Print the deduplication identity of a payment",
    )
    identity_parser.add_argument("--date", type=parse_day, required=True)
    identity_parser.add_argument("--amount", type=parse_decimal, required=True)
    identity_parser.add_argument("--customer", required=True)
    identity_parser.add_argument("--balance", type=parse_decimal, default=None)

    backfill_parser = subparsers.add_parser(
        "backfill",
        help="Assign identities to legacy payments",
    )
    backfill_parser.add_argument(
        "--remove-duplicates",
        action="store_true",
        help="Delete legacy rows whose identity is already taken",
    )

    return parser


def main(args: Optional[list] = None) -> int:
    """Main entry point for the CLI.

    Args:
        args: Optional list of command-line arguments (for testing).

    Returns:
        Exit code.
    """
    parser = create_parser()
    parsed_args = parser.parse_args(args)

    if not parsed_args.command:
        parser.print_help()
        return 1

    try:
        if parsed_args.command == "reconcile":
            return run_reconcile(parsed_args.database_url, parsed_args.cutoff, parsed_args.output)
        if parsed_args.command == "fetch":
            return run_fetch(
                LedgerDirection(parsed_args.direction),
                parsed_args.start,
                parsed_args.end,
                parsed_args.output,
            )
        if parsed_args.command == "identity":
            print(build_unique_code(
                parsed_args.date, parsed_args.amount, parsed_args.customer, parsed_args.balance,
            ))
            return 0
        if parsed_args.command == "backfill":
            return run_backfill(parsed_args.database_url, parsed_args.remove_duplicates)
    except DebtEngineError as e:
        logger.error(f"{parsed_args.command} failed: {e.message}")
        return 2

    return 0


if __name__ == "__main__":
    sys.exit(main())
