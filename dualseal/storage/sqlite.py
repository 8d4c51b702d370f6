import logging
import os
import sqlite3
import threading
from pathlib import Path
from typing import List, Optional

from dualseal.core.errors import BlobNotFound
from . import StorageBackend

logger = logging.getLogger(__name__)


class SQLiteStorage(StorageBackend):
    """SQLite persistent storage for ledger snapshots, capability state and payload blobs."""

    def __init__(self, db_path: str | Path | None = None):
        if db_path is None:
            env_path = os.environ.get("DUALSEAL_DB_PATH")
            db_path = env_path if env_path else Path.cwd() / "dualseal.db"

        self.db_path = Path(db_path)

        # Ensure the entire parent directory tree exists
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self.db_path = self.db_path.resolve()

        self._conn: Optional[sqlite3.Connection] = None
        # one connection shared across threads (reconciliation runs reads on a worker pool)
        self._lock = threading.Lock()
        self._connect()

    def _connect(self):
        conn_str = str(self.db_path)
        self._conn = sqlite3.connect(conn_str, isolation_level=None, check_same_thread=False)
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._create_schema()
        logger.debug("Opened %s", self.db_path)

    def _create_schema(self):
        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS blobs (
                namespace   TEXT    NOT NULL,
                key         TEXT    NOT NULL,
                value       BLOB    NOT NULL,
                updated_at  TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now')),
                PRIMARY KEY (namespace, key)
            )
        """)

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise RuntimeError("Storage connection is closed")
        return self._conn

    def put(self, namespace: str, key: str, blob: bytes) -> None:
        with self._lock:
            self.conn.execute("""
                INSERT INTO blobs (namespace, key, value) VALUES (?, ?, ?)
                ON CONFLICT (namespace, key) DO UPDATE SET
                    value = excluded.value,
                    updated_at = excluded.updated_at
            """, (namespace, key, sqlite3.Binary(blob)))

    def get(self, namespace: str, key: str) -> bytes:
        with self._lock:
            row = self.conn.execute(
                "SELECT value FROM blobs WHERE namespace = ? AND key = ?",
                (namespace, key)
            ).fetchone()
        if row is None:
            raise BlobNotFound(namespace, key)
        return bytes(row[0])

    def keys(self, namespace: str) -> List[str]:
        with self._lock:
            cursor = self.conn.execute(
                "SELECT key FROM blobs WHERE namespace = ? ORDER BY key ASC",
                (namespace,)
            )
            return [row[0] for row in cursor.fetchall()]

    def close(self) -> None:
        if self._conn:
            self._conn.close()
            self._conn = None
