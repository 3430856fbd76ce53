"""
Database connection management.

Provides SQLite connections for the balance store.
"""

import sqlite3
from pathlib import Path

DEFAULT_DB_PATH = "genledger.db"

# Seconds a writer waits for the database lock before giving up.
BUSY_TIMEOUT_SECONDS = 30.0


def get_connection(db_path: str = DEFAULT_DB_PATH) -> sqlite3.Connection:
    """Create and return a SQLite connection with foreign keys enabled.

    The connection runs in autocommit mode (``isolation_level=None``) so that
    callers open transactions explicitly with ``BEGIN IMMEDIATE``, which takes
    the write lock up front and serializes concurrent writers.

    Args:
        db_path: Path to SQLite database file

    Returns:
        SQLite connection with foreign key constraints enabled
    """
    path = Path(db_path)
    conn = sqlite3.connect(str(path), timeout=BUSY_TIMEOUT_SECONDS, isolation_level=None)
    conn.execute("PRAGMA foreign_keys = ON")
    return conn
