"""
Database connection management.

SQLite backs the pattern table and the cache snapshot between sessions.
"""

import sqlite3
from pathlib import Path

DEFAULT_DB_PATH = "insight_router.db"


def get_connection(db_path: str = DEFAULT_DB_PATH) -> sqlite3.Connection:
    """Open a SQLite connection, creating the parent directory if needed.

    Args:
        db_path: Path to SQLite database file

    Returns:
        SQLite connection with WAL journaling enabled
    """
    path = Path(db_path)
    if path.parent and not path.parent.exists():
        path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(path))
    conn.execute("PRAGMA journal_mode = WAL")
    return conn
