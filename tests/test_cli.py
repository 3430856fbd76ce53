"""
Tests for the CLI interface.
"""

import os
import tempfile
from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from genledger.cli.main import EXIT_CODE_FAIL, EXIT_CODE_INSUFFICIENT, EXIT_CODE_PASS, app
from genledger.core.reconciler import ReconcileResult, ReconcileState

runner = CliRunner()

NO_CREDENTIALS = {
    "OPENAI_API_KEY": None,
    "STRIPE_SECRET_KEY": None,
    "STRIPE_WEBHOOK_SECRET": None,
}


@pytest.fixture
def db_path():
    temp_dir = tempfile.mkdtemp()
    yield os.path.join(temp_dir, "cli.db")
    import shutil
    shutil.rmtree(temp_dir, ignore_errors=True)


def invoke(db_path, *args):
    return runner.invoke(app, ["--db", db_path, *args], env=NO_CREDENTIALS)


class TestCLI:
    """Test CLI commands."""

    def test_init(self, db_path):
        result = invoke(db_path, "init")

        assert result.exit_code == EXIT_CODE_PASS
        assert "Database initialized successfully" in result.output
        assert os.path.exists(db_path)

    def test_status_without_credentials(self, db_path):
        result = invoke(db_path, "status")

        assert result.exit_code == EXIT_CODE_PASS
        assert "Extraction disabled" in result.output
        assert "Reconciliation disabled" in result.output

    def test_grant_then_balance(self, db_path):
        result = invoke(db_path, "grant", "acct", "7")
        assert result.exit_code == EXIT_CODE_PASS
        assert "Granted 7 to acct" in result.output

        result = invoke(db_path, "balance", "acct")
        assert result.exit_code == EXIT_CODE_PASS
        assert "acct: 7 credits" in result.output

    def test_debit_and_insufficient(self, db_path):
        invoke(db_path, "grant", "acct", "1")

        result = invoke(db_path, "debit", "acct")
        assert result.exit_code == EXIT_CODE_PASS
        assert "balance 0" in result.output

        result = invoke(db_path, "debit", "acct")
        assert result.exit_code == EXIT_CODE_INSUFFICIENT
        assert "Insufficient credits" in result.output

    def test_invalid_amount(self, db_path):
        result = invoke(db_path, "grant", "acct", "0")

        assert result.exit_code == EXIT_CODE_FAIL
        assert "Error" in result.output

    def test_refund(self, db_path):
        result = invoke(db_path, "refund", "acct", "--amount", "2")

        assert result.exit_code == EXIT_CODE_PASS
        assert "Refunded 2 to acct" in result.output

    def test_history(self, db_path):
        invoke(db_path, "grant", "acct", "3", "--reason", "bonus")
        invoke(db_path, "debit", "acct")

        result = invoke(db_path, "history", "acct")

        assert result.exit_code == EXIT_CODE_PASS
        assert "bonus" in result.output
        assert "debit" in result.output

    def test_history_empty(self, db_path):
        result = invoke(db_path, "history", "nobody")

        assert result.exit_code == EXIT_CODE_PASS
        assert "No ledger entries" in result.output

    def test_reconcile_without_processor(self, db_path):
        result = invoke(db_path, "reconcile", "cs_1")

        assert result.exit_code == EXIT_CODE_FAIL
        assert "STRIPE_SECRET_KEY" in result.output

    def test_reconcile_credited(self, db_path):
        with patch('genledger.cli.main.build_services') as mock_build:
            mock_build.return_value.reconcile_purchase.return_value = ReconcileResult(
                state=ReconcileState.CREDITED,
                session_id="cs_1",
                payment_status="paid",
                account_id="acct",
                credits_added=30,
            )
            result = invoke(db_path, "reconcile", "cs_1")

        assert result.exit_code == EXIT_CODE_PASS
        assert "Result: CREDITED" in result.output
        assert "Credits added: 30" in result.output

    def test_reconcile_already_processed(self, db_path):
        with patch('genledger.cli.main.build_services') as mock_build:
            mock_build.return_value.reconcile_purchase.return_value = ReconcileResult(
                state=ReconcileState.ALREADY_CREDITED,
                session_id="cs_1",
                payment_status="paid",
                account_id="acct",
            )
            result = invoke(db_path, "reconcile", "cs_1")

        assert result.exit_code == EXIT_CODE_PASS
        assert "Already processed" in result.output

    def test_missing_config_file(self, db_path):
        result = runner.invoke(app, ["--config", "/nonexistent/config.yaml", "balance", "acct"], env=NO_CREDENTIALS)

        assert result.exit_code == EXIT_CODE_FAIL
        assert "Config file not found" in result.output
