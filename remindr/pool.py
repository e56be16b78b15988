"""
Bounded pool of SQLite connections.

Each connection is handed to exactly one caller at a time. Connections
are opened lazily up to max_size; when all are checked out, callers wait
up to `timeout` seconds before giving up with StorageError.

Every connection runs in autocommit mode (isolation_level=None) so the
store controls transactions explicitly with BEGIN IMMEDIATE.
"""

import logging
import queue
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from .errors import StorageError

logger = logging.getLogger(__name__)

DEFAULT_POOL_SIZE = 10
DEFAULT_CHECKOUT_TIMEOUT = 30.0
BUSY_TIMEOUT_MS = 5000


class ConnectionPool:
    """Lazily-filled, bounded pool of connections to one database file."""

    def __init__(
        self,
        db_path: Path,
        max_size: int = DEFAULT_POOL_SIZE,
        timeout: float = DEFAULT_CHECKOUT_TIMEOUT,
    ):
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self._db_path = db_path
        self._max_size = max_size
        self._timeout = timeout
        self._idle: queue.LifoQueue[sqlite3.Connection] = queue.LifoQueue()
        self._lock = threading.Lock()
        self._opened = 0
        self._closed = False

    @property
    def max_size(self) -> int:
        return self._max_size

    @property
    def size(self) -> int:
        """Number of physical connections currently open."""
        with self._lock:
            return self._opened

    def _connect(self) -> sqlite3.Connection:
        """Open and configure one connection."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(
            str(self._db_path),
            check_same_thread=False,
            isolation_level=None,
        )
        try:
            conn.row_factory = sqlite3.Row
            # Wait for locks instead of failing immediately
            conn.execute(f"PRAGMA busy_timeout={BUSY_TIMEOUT_MS}")
            # WAL lets the CLI read while the daemon writes
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA synchronous=NORMAL")
            conn.execute("PRAGMA foreign_keys=ON")
        except sqlite3.Error:
            conn.close()
            raise
        return conn

    def _acquire(self) -> sqlite3.Connection:
        try:
            return self._idle.get_nowait()
        except queue.Empty:
            pass

        with self._lock:
            if self._closed:
                raise StorageError("Connection pool is closed")
            can_open = self._opened < self._max_size
            if can_open:
                self._opened += 1

        if can_open:
            try:
                return self._connect()
            except sqlite3.Error as e:
                with self._lock:
                    self._opened -= 1
                raise StorageError(f"Cannot open database {self._db_path}: {e}") from e

        try:
            return self._idle.get(timeout=self._timeout)
        except queue.Empty:
            raise StorageError(
                f"Timed out after {self._timeout}s waiting for a database connection "
                f"(pool size {self._max_size})"
            ) from None

    def _release(self, conn: sqlite3.Connection) -> None:
        with self._lock:
            closed = self._closed
            if closed:
                self._opened -= 1
        if closed:
            conn.close()
            return
        if conn.in_transaction:
            # Caller bailed out mid-transaction; don't leak it to the next user
            logger.warning("Rolling back transaction left open on pooled connection")
            conn.rollback()
        self._idle.put(conn)

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        """Check out a connection for the duration of the block."""
        conn = self._acquire()
        try:
            yield conn
        finally:
            self._release(conn)

    def close(self) -> None:
        """Close idle connections; checked-out ones close when returned."""
        with self._lock:
            self._closed = True
        while True:
            try:
                conn = self._idle.get_nowait()
            except queue.Empty:
                break
            conn.close()
            with self._lock:
                self._opened -= 1

    @property
    def closed(self) -> bool:
        return self._closed
