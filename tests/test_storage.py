"""
Unit tests for storage layer.

Tests schema creation, conditional balance updates, purchase records and
the ledger journal.
"""

import os
import sqlite3
import tempfile
from datetime import datetime, timezone

import pytest

from genledger.core.errors import DeltaStatus, InsertStatus
from genledger.storage.db import get_connection
from genledger.storage.models import PurchaseRecord
from genledger.storage.repository import SqliteStore, initialize_schema


def make_record(key="cs_test_1", account_id="acct-1", credits=30):
    return PurchaseRecord(
        idempotency_key=key,
        account_id=account_id,
        credits_granted=credits,
        amount=3500,
        currency="huf",
        created_at=datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc),
    )


class TestStorageSchema:
    """Test database schema creation and structure."""

    def test_schema_creation(self):
        """Verify tables are created correctly."""
        with tempfile.TemporaryDirectory() as temp_dir:
            db_path = os.path.join(temp_dir, "test.db")
            initialize_schema(db_path)

            conn = get_connection(db_path)
            try:
                cursor = conn.execute(
                    "SELECT name FROM sqlite_master WHERE type='table' ORDER BY name"
                )
                tables = {row[0] for row in cursor.fetchall()}
                assert {"accounts", "purchases", "ledger_entries"} <= tables

                cursor = conn.execute("PRAGMA table_info(ledger_entries)")
                column_names = [col[1] for col in cursor.fetchall()]
                assert column_names == [
                    'id', 'account_id', 'delta', 'reason',
                    'balance_after', 'reference', 'timestamp'
                ]
            finally:
                conn.close()

    def test_schema_creation_idempotent(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            db_path = os.path.join(temp_dir, "test.db")
            initialize_schema(db_path)
            initialize_schema(db_path)

    def test_negative_balance_rejected_by_constraint(self):
        """The table itself refuses negative balances."""
        with tempfile.TemporaryDirectory() as temp_dir:
            db_path = os.path.join(temp_dir, "test.db")
            store = SqliteStore(db_path)
            store.initialize_schema()
            store.ensure_account("acct-1")

            conn = get_connection(db_path)
            try:
                with pytest.raises(sqlite3.IntegrityError):
                    conn.execute("UPDATE accounts SET credits = -1 WHERE id = 'acct-1'")
            finally:
                conn.close()


class TestBalanceUpdates:
    """Test conditional balance updates."""

    def setup_method(self):
        """Set up test environment."""
        self.temp_dir = tempfile.mkdtemp()
        self.store = SqliteStore(os.path.join(self.temp_dir, "test.db"))
        self.store.initialize_schema()

    def teardown_method(self):
        """Clean up test environment."""
        import shutil
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_ensure_account(self):
        assert self.store.ensure_account("acct-1") is True
        assert self.store.ensure_account("acct-1") is False

        account = self.store.get_account("acct-1")
        assert account.credits == 0
        assert account.starter_granted is False

    def test_unknown_account_reads_zero(self):
        assert self.store.read_balance("nobody") == 0
        assert self.store.get_account("nobody") is None

    def test_positive_delta_opens_account(self):
        result = self.store.apply_delta("acct-1", 5, "grant")
        assert result.status == DeltaStatus.APPLIED
        assert result.balance == 5
        assert self.store.read_balance("acct-1") == 5

    def test_negative_delta_rejected_when_short(self):
        self.store.apply_delta("acct-1", 2, "grant")
        result = self.store.apply_delta("acct-1", -3, "debit")

        assert result.status == DeltaStatus.REJECTED
        assert result.balance == 2
        assert self.store.read_balance("acct-1") == 2

    def test_negative_delta_on_missing_account_rejected(self):
        result = self.store.apply_delta("ghost", -1, "debit")
        assert result.status == DeltaStatus.REJECTED
        assert result.balance == 0
        assert self.store.get_account("ghost") is None

    def test_zero_delta_invalid(self):
        with pytest.raises(ValueError):
            self.store.apply_delta("acct-1", 0, "noop")

    def test_journal_written_only_for_applied_deltas(self):
        self.store.apply_delta("acct-1", 3, "grant", reference="promo")
        self.store.apply_delta("acct-1", -1, "debit")
        self.store.apply_delta("acct-1", -5, "debit")

        entries = self.store.fetch_ledger_entries("acct-1")
        assert [(e.delta, e.reason, e.balance_after) for e in entries] == [
            (-1, "debit", 2),
            (3, "grant", 3),
        ]
        assert entries[1].reference == "promo"

    def test_journal_limit(self):
        for _ in range(5):
            self.store.apply_delta("acct-1", 1, "grant")
        assert len(self.store.fetch_ledger_entries("acct-1", limit=3)) == 3

    def test_grant_once(self):
        first = self.store.grant_once("acct-1", 5)
        second = self.store.grant_once("acct-1", 5)

        assert first.applied
        assert not second.applied
        assert self.store.read_balance("acct-1") == 5
        assert self.store.get_account("acct-1").starter_granted is True


class TestPurchases:
    """Test purchase records keyed by idempotency key."""

    def setup_method(self):
        """Set up test environment."""
        self.temp_dir = tempfile.mkdtemp()
        self.store = SqliteStore(os.path.join(self.temp_dir, "test.db"))
        self.store.initialize_schema()

    def teardown_method(self):
        """Clean up test environment."""
        import shutil
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_record_purchase_credits_once(self):
        first = self.store.record_purchase(make_record())
        second = self.store.record_purchase(make_record())

        assert first.status == InsertStatus.INSERTED
        assert first.balance == 30
        assert second.status == InsertStatus.CONFLICT
        assert second.balance == 30
        assert self.store.read_balance("acct-1") == 30

        entries = self.store.fetch_ledger_entries("acct-1")
        assert len(entries) == 1
        assert entries[0].reference == "cs_test_1"

    def test_insert_if_absent(self):
        assert self.store.insert_if_absent(make_record()) == InsertStatus.INSERTED
        assert self.store.insert_if_absent(make_record()) == InsertStatus.CONFLICT
        assert self.store.read_balance("acct-1") == 0
        assert self.store.record_purchase(make_record()).status == InsertStatus.CONFLICT
        assert self.store.read_balance("acct-1") == 0

    def test_get_purchase(self):
        self.store.record_purchase(make_record())
        record = self.store.get_purchase("cs_test_1")

        assert record == make_record()
        assert self.store.get_purchase("cs_missing") is None

    def test_purchase_record_validation(self):
        with pytest.raises(ValueError, match="idempotency_key"):
            make_record(key="")
        with pytest.raises(ValueError, match="credits_granted"):
            make_record(credits=0)
