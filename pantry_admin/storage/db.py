"""
Database connection management.

Provides the SQLite connection backing the local document store.
"""

import sqlite3
from pathlib import Path

DEFAULT_DB_PATH = "pantry_admin.db"


def get_connection(db_path: str = DEFAULT_DB_PATH) -> sqlite3.Connection:
    """Create and return a SQLite connection for the document store.

    The connection is opened with ``check_same_thread=False`` because store
    calls are dispatched to worker threads with ``asyncio.to_thread``.

    Args:
        db_path: Path to SQLite database file

    Returns:
        SQLite connection with rows addressable by column name
    """
    path = Path(db_path)
    conn = sqlite3.connect(str(path), check_same_thread=False)
    conn.row_factory = sqlite3.Row
    return conn
