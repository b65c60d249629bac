"""
Repository pattern for usage persistence.

The admission controller persists its ledger and policy as opaque blobs.
Stores only move bytes; decoding and corruption recovery happen in the
controller.
"""

import sqlite3
import threading
from datetime import datetime
from typing import Dict, Optional, Protocol

from .db import DEFAULT_DB_PATH, get_connection

LEDGER_KEY = "usage_ledger"
POLICY_KEY = "rate_limit_policy"


class UsageStore(Protocol):
    """Persistence collaborator for the admission controller."""

    def load_ledger(self) -> Optional[bytes]: ...

    def save_ledger(self, blob: bytes) -> None: ...

    def load_policy(self) -> Optional[bytes]: ...

    def save_policy(self, blob: bytes) -> None: ...


class InMemoryUsageStore:
    """Process-local store, used by tests and one-shot CLI runs."""

    def __init__(self, ledger: Optional[bytes] = None, policy: Optional[bytes] = None):
        self._blobs: Dict[str, bytes] = {}
        self._lock = threading.Lock()
        if ledger is not None:
            self._blobs[LEDGER_KEY] = ledger
        if policy is not None:
            self._blobs[POLICY_KEY] = policy

    def load_ledger(self) -> Optional[bytes]:
        with self._lock:
            return self._blobs.get(LEDGER_KEY)

    def save_ledger(self, blob: bytes) -> None:
        with self._lock:
            self._blobs[LEDGER_KEY] = blob

    def load_policy(self) -> Optional[bytes]:
        with self._lock:
            return self._blobs.get(POLICY_KEY)

    def save_policy(self, blob: bytes) -> None:
        with self._lock:
            self._blobs[POLICY_KEY] = blob


class SQLiteUsageStore:
    """Key/blob store backed by a single SQLite table.

    Each operation opens its own connection so the store can be shared
    between threads.
    """

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        """Initialize the store with a database path.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path
        initialize_schema(db_path)

    def _load(self, key: str) -> Optional[bytes]:
        conn = get_connection(self.db_path)
        try:
            row = conn.execute(
                "SELECT payload FROM usage_blob WHERE key = ?", (key,)
            ).fetchone()
            if row is None or row[0] is None:
                return None
            payload = row[0]
            if isinstance(payload, str):
                payload = payload.encode("utf-8")
            return bytes(payload)
        finally:
            conn.close()

    def _save(self, key: str, blob: bytes) -> None:
        conn = get_connection(self.db_path)
        try:
            conn.execute(
                """
                INSERT INTO usage_blob (key, payload, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    payload = excluded.payload,
                    updated_at = excluded.updated_at
                """,
                (key, sqlite3.Binary(blob), datetime.now().isoformat())
            )
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def load_ledger(self) -> Optional[bytes]:
        return self._load(LEDGER_KEY)

    def save_ledger(self, blob: bytes) -> None:
        self._save(LEDGER_KEY, blob)

    def load_policy(self) -> Optional[bytes]:
        return self._load(POLICY_KEY)

    def save_policy(self, blob: bytes) -> None:
        self._save(POLICY_KEY, blob)


def initialize_schema(db_path: str = DEFAULT_DB_PATH) -> None:
    """Create the usage_blob table if it doesn't exist.

    Args:
        db_path: Path to SQLite database file
    """
    conn = get_connection(db_path)
    try:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS usage_blob (
                key TEXT PRIMARY KEY,
                payload BLOB,
                updated_at TEXT NOT NULL
            )
        """)
        conn.commit()
    finally:
        conn.close()
