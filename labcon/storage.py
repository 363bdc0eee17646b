"""
Storage Engine

Embedded, ordered key-value store backed by SQLite.

Keys and values are byte strings. All access goes through transactions:

    store = Store("labcon.db")

    with store.transaction() as txn:
        txn.set(b"driver/foo", b"...")

    with store.view() as txn:
        for key, value in txn.scan(b"driver/"):
            ...

A write transaction takes the database write lock when it begins, so a
read-check-write sequence inside one transaction is serializable with respect
to every other write transaction. An exception raised inside the `with` block
rolls the transaction back.
"""

import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from .errors import KeyNotFoundError, StorageError

logger = logging.getLogger(__name__)

MEMORY = ":memory:"


class Transaction:
    """A single read-only or read-write transaction on a Store."""

    def __init__(self, conn: sqlite3.Connection, writable: bool):
        self._conn = conn
        self.writable = writable

    def _check_writable(self):
        if not self.writable:
            raise StorageError("Cannot write in a read-only transaction")

    def get(self, key: bytes) -> bytes:
        """Return the value stored under `key`, raising KeyNotFoundError."""
        row = self._conn.execute(
            "SELECT value FROM entries WHERE key = ?",
            (key,),
        ).fetchone()
        if row is None:
            raise KeyNotFoundError(key)
        return bytes(row[0])

    def set(self, key: bytes, value: bytes):
        """Store `value` under `key`, replacing any previous value."""
        self._check_writable()
        self._conn.execute(
            "INSERT OR REPLACE INTO entries (key, value) VALUES (?, ?)",
            (key, value),
        )

    def delete(self, key: bytes):
        """Remove `key`, raising KeyNotFoundError if it is absent."""
        self._check_writable()
        cursor = self._conn.execute("DELETE FROM entries WHERE key = ?", (key,))
        if cursor.rowcount == 0:
            raise KeyNotFoundError(key)

    def scan(self, prefix: bytes = b"") -> Iterator[tuple[bytes, bytes]]:
        """Yield `(key, value)` pairs whose key starts with `prefix`, in key order."""
        cursor = self._conn.execute(
            """
            SELECT key, value FROM entries
            WHERE substr(key, 1, ?) = ?
            ORDER BY key
            """,
            (len(prefix), prefix),
        )
        for key, value in cursor.fetchall():
            yield bytes(key), bytes(value)


class Store:
    """
    SQLite-backed key-value store.

    A file database runs in WAL mode and opens a connection per transaction,
    so the handle can be shared by every thread of the process. The special
    path ":memory:" keeps one private connection whose transactions are
    serialized by the store; it is meant for tests and throwaway servers.
    """

    def __init__(self, path: str = MEMORY, timeout: float = 30.0):
        self.path = str(path)
        self.timeout = timeout
        self._lock = threading.RLock()
        self._shared: Optional[sqlite3.Connection] = None
        self._closed = False

        if self.path == MEMORY:
            self._shared = self._open(check_same_thread=False)
        else:
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)

        self._init_db()

    def _open(self, **kwargs) -> sqlite3.Connection:
        try:
            return sqlite3.connect(self.path, timeout=self.timeout, isolation_level=None, **kwargs)
        except sqlite3.Error as e:
            raise StorageError(f"Failed to open database {self.path}: {e}") from e

    def _init_db(self):
        """Initialize database schema."""
        try:
            with self._connect() as conn:
                if self._shared is None:
                    conn.execute("PRAGMA journal_mode=WAL")
                conn.execute("""
                    CREATE TABLE IF NOT EXISTS entries (
                        key BLOB PRIMARY KEY,
                        value BLOB NOT NULL
                    ) WITHOUT ROWID
                """)
        except sqlite3.Error as e:
            raise StorageError(f"Failed to initialize database {self.path}: {e}") from e
        logger.debug("Opened store at %s", self.path)

    @contextmanager
    def _connect(self):
        """Context manager for a database connection."""
        if self._closed:
            raise StorageError(f"Store {self.path} is closed")
        if self._shared is not None:
            with self._lock:
                yield self._shared
            return

        conn = self._open()
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def _begin(self, writable: bool):
        try:
            with self._connect() as conn:
                conn.execute("BEGIN IMMEDIATE" if writable else "BEGIN")
                try:
                    yield Transaction(conn, writable)
                except BaseException:
                    if conn.in_transaction:
                        conn.execute("ROLLBACK")
                    raise
                conn.execute("COMMIT")
        except sqlite3.Error as e:
            raise StorageError(str(e)) from e

    def view(self):
        """Open a read-only transaction over a consistent snapshot."""
        return self._begin(writable=False)

    def transaction(self):
        """Open a read-write transaction that commits on success."""
        return self._begin(writable=True)

    def close(self):
        """Close the store. Further transactions raise StorageError."""
        with self._lock:
            self._closed = True
            if self._shared is not None:
                self._shared.close()
                self._shared = None
