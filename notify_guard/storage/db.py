"""
Database connection management.

Provides SQLite connection for the usage ledger and subscription tables.
"""

import sqlite3
from pathlib import Path

DEFAULT_DB_PATH = "notify_guard.db"

# Seconds a writer waits on a locked database before giving up.
BUSY_TIMEOUT_SECONDS = 5.0


def get_connection(db_path: str = DEFAULT_DB_PATH) -> sqlite3.Connection:
    """Open the ledger database.

    Concurrent writers (quota records from parallel requests) wait up to
    BUSY_TIMEOUT_SECONDS for the write lock instead of failing at once.
    """
    return sqlite3.connect(str(Path(db_path)), timeout=BUSY_TIMEOUT_SECONDS)
