"""
Database connection management.

Provides SQLite connection for usage persistence.
"""

import sqlite3
from pathlib import Path

DEFAULT_DB_PATH = ".scoresnap-guard.db"


def get_connection(db_path: str = DEFAULT_DB_PATH) -> sqlite3.Connection:
    """Create and return a SQLite database connection.

    Args:
        db_path: Path to SQLite database file

    Returns:
        SQLite connection with a short busy timeout for concurrent writers
    """
    path = Path(db_path)
    if path.parent and not path.parent.exists():
        path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(path), timeout=5.0)
    return conn
