"""
Repository pattern for data access.

SqliteStore is the single source of truth for balances. Every mutation runs
in one write-locked transaction and evaluates its predicate inside the
UPDATE statement, so no caller ever reads a balance and writes it back.
"""

import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, List, Optional

from genledger.core.errors import DeltaStatus, InsertStatus

from .db import DEFAULT_DB_PATH, get_connection
from .models import Account, DeltaResult, LedgerEntry, PurchaseRecord, PurchaseResult

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS accounts (
        id TEXT PRIMARY KEY,
        credits INTEGER NOT NULL DEFAULT 0 CHECK (credits >= 0),
        starter_granted INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS purchases (
        idempotency_key TEXT PRIMARY KEY,
        account_id TEXT NOT NULL REFERENCES accounts(id),
        credits_granted INTEGER NOT NULL CHECK (credits_granted > 0),
        amount INTEGER,
        currency TEXT,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS ledger_entries (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        account_id TEXT NOT NULL REFERENCES accounts(id),
        delta INTEGER NOT NULL,
        reason TEXT NOT NULL,
        balance_after INTEGER NOT NULL,
        reference TEXT,
        timestamp TEXT NOT NULL
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS ledger_entries_account_idx
        ON ledger_entries (account_id, id)
    """,
)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@contextmanager
def _write_transaction(conn: sqlite3.Connection) -> Iterator[sqlite3.Connection]:
    """Run a block inside BEGIN IMMEDIATE, committing on success."""
    conn.execute("BEGIN IMMEDIATE")
    try:
        yield conn
    except Exception:
        conn.rollback()
        raise
    conn.commit()


def _insert_account_if_missing(conn: sqlite3.Connection, account_id: str, now: str) -> bool:
    cursor = conn.execute(
        """
        INSERT OR IGNORE INTO accounts (id, credits, starter_granted, created_at, updated_at)
        VALUES (?, 0, 0, ?, ?)
        """,
        (account_id, now, now),
    )
    return cursor.rowcount == 1


def _read_credits(conn: sqlite3.Connection, account_id: str) -> int:
    row = conn.execute("SELECT credits FROM accounts WHERE id = ?", (account_id,)).fetchone()
    return int(row[0]) if row else 0


def _append_entry(
    conn: sqlite3.Connection,
    account_id: str,
    delta: int,
    reason: str,
    balance_after: int,
    reference: Optional[str],
    now: str,
) -> None:
    conn.execute(
        """
        INSERT INTO ledger_entries
        (account_id, delta, reason, balance_after, reference, timestamp)
        VALUES (?, ?, ?, ?, ?, ?)
        """,
        (account_id, delta, reason, balance_after, reference, now),
    )


class SqliteStore:
    """Balance store backed by a SQLite file.

    Connections are opened per operation, so one instance can be shared by
    every request handler and thread in the process.
    """

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        """Initialize the store with a database path.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path

    def initialize_schema(self) -> None:
        """Create the tables if they don't exist."""
        initialize_schema(self.db_path)

    def ensure_account(self, account_id: str) -> bool:
        """Create the account with a zero balance if it doesn't exist.

        Returns:
            True if the account was created by this call
        """
        conn = get_connection(self.db_path)
        try:
            return _insert_account_if_missing(conn, account_id, _now())
        finally:
            conn.close()

    def get_account(self, account_id: str) -> Optional[Account]:
        conn = get_connection(self.db_path)
        try:
            row = conn.execute(
                """
                SELECT id, credits, starter_granted, created_at, updated_at
                FROM accounts WHERE id = ?
                """,
                (account_id,),
            ).fetchone()
        finally:
            conn.close()

        if not row:
            return None
        return Account(
            id=row[0],
            credits=row[1],
            starter_granted=bool(row[2]),
            created_at=datetime.fromisoformat(row[3]),
            updated_at=datetime.fromisoformat(row[4]),
        )

    def read_balance(self, account_id: str) -> int:
        """Current balance; unknown accounts read as zero."""
        conn = get_connection(self.db_path)
        try:
            return _read_credits(conn, account_id)
        finally:
            conn.close()

    def apply_delta(
        self,
        account_id: str,
        delta: int,
        reason: str,
        reference: Optional[str] = None,
        floor: int = 0,
    ) -> DeltaResult:
        """Apply a signed delta only if the resulting balance stays >= floor.

        The predicate is part of the UPDATE itself, so the check and the
        write are one step for every concurrent caller. Positive deltas open
        the account if needed; negative deltas against a missing account are
        rejected.

        Args:
            account_id: Target account
            delta: Signed change to apply (non-zero)
            reason: Journal reason, e.g. "debit", "refund", "grant"
            reference: Optional external reference stored in the journal
            floor: Minimum balance allowed after the update

        Returns:
            DeltaResult tagged APPLIED or REJECTED
        """
        if delta == 0:
            raise ValueError("delta must be non-zero")

        conn = get_connection(self.db_path)
        try:
            with _write_transaction(conn):
                now = _now()
                if delta > 0:
                    _insert_account_if_missing(conn, account_id, now)
                cursor = conn.execute(
                    """
                    UPDATE accounts
                    SET credits = credits + ?, updated_at = ?
                    WHERE id = ? AND credits + ? >= ?
                    """,
                    (delta, now, account_id, delta, floor),
                )
                balance = _read_credits(conn, account_id)
                if cursor.rowcount == 0:
                    return DeltaResult(DeltaStatus.REJECTED, balance)
                _append_entry(conn, account_id, delta, reason, balance, reference, now)
                return DeltaResult(DeltaStatus.APPLIED, balance)
        finally:
            conn.close()

    def insert_if_absent(self, record: PurchaseRecord) -> InsertStatus:
        """Insert a purchase record keyed by its idempotency key.

        Part of the Store capability ("record a purchase by idempotency
        key") for stores that credit in a separate step. Does not touch the
        balance. CreditLedger never calls it; it uses record_purchase, which
        applies the credit in the same transaction.
        """
        conn = get_connection(self.db_path)
        try:
            with _write_transaction(conn):
                _insert_account_if_missing(conn, record.account_id, _now())
                if self._insert_purchase(conn, record):
                    return InsertStatus.INSERTED
                return InsertStatus.CONFLICT
        finally:
            conn.close()

    def record_purchase(self, record: PurchaseRecord, reason: str = "purchase") -> PurchaseResult:
        """Insert the purchase record and credit the account as one unit.

        A conflict on the idempotency key leaves both the purchase table and
        the balance untouched.

        Args:
            record: The purchase to record
            reason: Journal reason for the credit

        Returns:
            PurchaseResult tagged INSERTED or CONFLICT
        """
        conn = get_connection(self.db_path)
        try:
            with _write_transaction(conn):
                now = _now()
                _insert_account_if_missing(conn, record.account_id, now)
                if not self._insert_purchase(conn, record):
                    return PurchaseResult(InsertStatus.CONFLICT, _read_credits(conn, record.account_id))
                conn.execute(
                    "UPDATE accounts SET credits = credits + ?, updated_at = ? WHERE id = ?",
                    (record.credits_granted, now, record.account_id),
                )
                balance = _read_credits(conn, record.account_id)
                _append_entry(
                    conn, record.account_id, record.credits_granted, reason,
                    balance, record.idempotency_key, now,
                )
                return PurchaseResult(InsertStatus.INSERTED, balance)
        finally:
            conn.close()

    def grant_once(self, account_id: str, amount: int, reason: str = "starter") -> DeltaResult:
        """Credit ``amount`` only if the account's starter flag is not yet set.

        Sets the flag in the same UPDATE, so repeated or concurrent calls
        grant at most once.
        """
        conn = get_connection(self.db_path)
        try:
            with _write_transaction(conn):
                now = _now()
                _insert_account_if_missing(conn, account_id, now)
                cursor = conn.execute(
                    """
                    UPDATE accounts
                    SET credits = credits + ?, starter_granted = 1, updated_at = ?
                    WHERE id = ? AND starter_granted = 0
                    """,
                    (amount, now, account_id),
                )
                balance = _read_credits(conn, account_id)
                if cursor.rowcount == 0:
                    return DeltaResult(DeltaStatus.REJECTED, balance)
                if amount:
                    _append_entry(conn, account_id, amount, reason, balance, None, now)
                return DeltaResult(DeltaStatus.APPLIED, balance)
        finally:
            conn.close()

    def get_purchase(self, idempotency_key: str) -> Optional[PurchaseRecord]:
        conn = get_connection(self.db_path)
        try:
            row = conn.execute(
                """
                SELECT idempotency_key, account_id, credits_granted, amount, currency, created_at
                FROM purchases WHERE idempotency_key = ?
                """,
                (idempotency_key,),
            ).fetchone()
        finally:
            conn.close()

        if not row:
            return None
        return PurchaseRecord(
            idempotency_key=row[0],
            account_id=row[1],
            credits_granted=row[2],
            amount=row[3],
            currency=row[4],
            created_at=datetime.fromisoformat(row[5]),
        )

    def fetch_ledger_entries(self, account_id: str, limit: int = 100) -> List[LedgerEntry]:
        """Fetch journal entries for an account, newest first.

        Args:
            account_id: Account to fetch entries for
            limit: Maximum number of entries to return

        Returns:
            List of ledger entries ordered newest first
        """
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute(
                """
                SELECT account_id, delta, reason, balance_after, timestamp, reference
                FROM ledger_entries
                WHERE account_id = ?
                ORDER BY id DESC LIMIT ?
                """,
                (account_id, limit),
            )
            entries = []
            for row in cursor.fetchall():
                entries.append(LedgerEntry(
                    account_id=row[0],
                    delta=row[1],
                    reason=row[2],
                    balance_after=row[3],
                    timestamp=datetime.fromisoformat(row[4]),
                    reference=row[5],
                ))
            return entries
        finally:
            conn.close()

    @staticmethod
    def _insert_purchase(conn: sqlite3.Connection, record: PurchaseRecord) -> bool:
        cursor = conn.execute(
            """
            INSERT OR IGNORE INTO purchases
            (idempotency_key, account_id, credits_granted, amount, currency, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                record.idempotency_key,
                record.account_id,
                record.credits_granted,
                record.amount,
                record.currency,
                record.created_at.isoformat(),
            ),
        )
        return cursor.rowcount == 1


def initialize_schema(db_path: str = DEFAULT_DB_PATH) -> None:
    """Create the accounts, purchases and ledger_entries tables if missing.

    ledger_entries is append-only: no UPDATE or DELETE is ever issued on it.

    Args:
        db_path: Path to SQLite database file
    """
    conn = get_connection(db_path)
    try:
        with _write_transaction(conn):
            for statement in _SCHEMA:
                conn.execute(statement)
    finally:
        conn.close()
