"""Tests for the command-line interface."""

import json
from decimal import Decimal
from unittest.mock import MagicMock, patch

import pytest

from debt_engine.cli import create_parser, main
from debt_engine.exceptions import ExternalServiceError
from debt_engine.ledger import LedgerDirection

from conftest import CUTOFF


class TestParser:
    """Tests for argument parsing."""

    def test_reconcile_arguments(self):
        """Test the reconcile subcommand options."""
        args = create_parser().parse_args(["--database-url", "sqlite+aiosqlite:///x.db", "reconcile", "--cutoff", "2025-04-29"])
        assert args.command == "reconcile"
        assert args.cutoff == CUTOFF
        assert args.database_url == "sqlite+aiosqlite:///x.db"

    def test_bad_date_rejected(self):
        """Test malformed dates are usage errors."""
        with pytest.raises(SystemExit):
            create_parser().parse_args(["fetch", "--start", "05/01/2025", "--end", "2025-05-02"])

    def test_no_command(self):
        """Test running without a subcommand prints help and fails."""
        assert main([]) == 1


class TestIdentityCommand:
    """Tests for the identity subcommand."""

    def test_prints_identity(self, capsys):
        """Test the identity of a payment is printed."""
        code = main([
            "identity", "--date", "2025-05-02", "--amount", "1410.00",
            "--customer", "405123456", "--balance", "2322.46",
        ])
        assert code == 0
        assert capsys.readouterr().out.strip() == "2025-05-02|141000|405123456|232246"

    def test_without_balance(self, capsys):
        """Test the balance defaults to zero."""
        main(["identity", "--date", "2025-05-04", "--amount", "75.5", "--customer", "405123456"])
        assert capsys.readouterr().out.strip() == "2025-05-04|7550|405123456|0"


class TestFetchCommand:
    """Tests for the fetch subcommand."""

    def test_fetch_writes_documents(self, tmp_path, make_sale):
        """Test fetched documents are written as JSON."""
        client = MagicMock()
        client.__enter__.return_value = client
        client.fetch.return_value = [make_sale("405123456", "12.50", CUTOFF)]
        output = tmp_path / "docs.json"

        with patch("debt_engine.cli.LedgerClient.from_settings", return_value=client):
            code = main([
                "fetch", "--direction", "purchase", "--start", "2025-05-01",
                "--end", "2025-05-08", "--output", str(output),
            ])

        assert code == 0
        args = client.fetch.call_args.args
        assert args[0] == LedgerDirection.PURCHASE
        documents = json.loads(output.read_text())
        assert documents[0]["counterparty_id"] == "405123456"
        assert Decimal(documents[0]["gross_amount"]) == Decimal("12.50")

    def test_service_error_exit_code(self):
        """Test service failures exit with code 2."""
        client = MagicMock()
        client.__enter__.return_value = client
        client.fetch.side_effect = ExternalServiceError("revenue-service", "down")

        with patch("debt_engine.cli.LedgerClient.from_settings", return_value=client):
            code = main(["fetch", "--start", "2025-05-01", "--end", "2025-05-02"])

        assert code == 2


class TestReconcileCommand:
    """Tests for the reconcile subcommand."""

    def test_reconcile_empty_database(self, file_database_url, tmp_path):
        """Test a reconcile run against an empty database reports zero customers."""
        client = MagicMock()
        client.fetch.return_value = []
        output = tmp_path / "result.json"

        with patch("debt_engine.jobs.runner.LedgerClient.from_settings", return_value=client):
            code = main([
                "--database-url", file_database_url,
                "reconcile", "--cutoff", "2025-04-29", "--output", str(output),
            ])

        assert code == 0
        assert json.loads(output.read_text())["total_customers"] == 0
