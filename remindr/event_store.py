"""
Event store using SQLite.

Durable, queryable log of recorded commands plus the single
"daemon considered active" flag.

The store is the source of truth for:
- Recorded command events (text, capture timestamp, classification)
- The advisory daemon status flag (singleton row)
- The schema version

All access goes through a bounded ConnectionPool in WAL mode so the CLI
can query while the daemon appends. Schema migrations are forward-only
and run inside one BEGIN IMMEDIATE transaction: a crash or concurrent
opener never observes a half-upgraded schema.
"""

import logging
import sqlite3
from pathlib import Path
from typing import Callable, Optional

from .errors import StorageError
from .pool import DEFAULT_POOL_SIZE, ConnectionPool
from .types import Event, format_utc_timestamp, parse_utc_timestamp, utc_now

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1

# Hard cap on search results
SEARCH_LIMIT = 50

_EVENT_COLUMNS = "id, timestamp, text, category, tags, context"


def _migrate_v1(conn: sqlite3.Connection) -> None:
    """Initial schema: events, singleton status row, recency/text indexes."""
    conn.execute("""
        CREATE TABLE IF NOT EXISTS events (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            timestamp TEXT NOT NULL,
            text TEXT NOT NULL,
            category TEXT,
            tags TEXT,
            context TEXT
        )
    """)
    conn.execute("""
        CREATE TABLE IF NOT EXISTS daemon_status (
            id INTEGER PRIMARY KEY CHECK (id = 1),
            is_active INTEGER NOT NULL DEFAULT 0
        )
    """)
    conn.execute(
        "INSERT OR IGNORE INTO daemon_status (id, is_active) VALUES (1, 0)"
    )
    conn.execute("""
        CREATE INDEX IF NOT EXISTS idx_events_timestamp
        ON events(timestamp)
    """)
    conn.execute("""
        CREATE INDEX IF NOT EXISTS idx_events_text
        ON events(text)
    """)


# version -> step that upgrades from (version - 1)
MIGRATIONS: dict[int, Callable[[sqlite3.Connection], None]] = {
    1: _migrate_v1,
}


def _escape_like(keyword: str) -> str:
    """Escape LIKE wildcards so the keyword matches literally."""
    return (
        keyword.replace("\\", "\\\\")
        .replace("%", "\\%")
        .replace("_", "\\_")
    )


def _row_to_event(row: sqlite3.Row) -> Event:
    return Event(
        id=row["id"],
        timestamp=parse_utc_timestamp(row["timestamp"]),
        text=row["text"],
        category=row["category"],
        tags=row["tags"],
        context=row["context"],
    )


class EventStore:
    """
    SQLite-backed store of recorded command events.

    Lifecycle is explicit: construct, migrate(), use, close(). Every
    component that needs the store receives this handle; there is no
    process-wide global.
    """

    def __init__(self, db_path: Path, pool_size: int = DEFAULT_POOL_SIZE):
        """
        Args:
            db_path: Path to SQLite database file
            pool_size: Maximum number of concurrent connections
        """
        self._db_path = db_path
        self._pool = ConnectionPool(db_path, max_size=pool_size)

    @property
    def db_path(self) -> Path:
        return self._db_path

    # -------------------------------------------------------------------------
    # Schema
    # -------------------------------------------------------------------------

    def migrate(self) -> int:
        """
        Create or upgrade the schema to SCHEMA_VERSION.

        Idempotent and safe to call on every process start. All pending
        steps plus the version bump commit together or not at all.

        Returns:
            The schema version after migration

        Raises:
            StorageError: if the database is unreadable or corrupt, or
                was written by a newer remindr
        """
        try:
            with self._pool.connection() as conn:
                conn.execute("BEGIN IMMEDIATE")
                try:
                    conn.execute("""
                        CREATE TABLE IF NOT EXISTS schema_version (
                            version INTEGER NOT NULL
                        )
                    """)
                    row = conn.execute(
                        "SELECT version FROM schema_version LIMIT 1"
                    ).fetchone()
                    current = row["version"] if row is not None else 0

                    if current > SCHEMA_VERSION:
                        raise StorageError(
                            f"Database {self._db_path} has schema version {current}, "
                            f"newer than supported ({SCHEMA_VERSION})"
                        )

                    if current < SCHEMA_VERSION:
                        logger.info(
                            "Migrating database from version %d to %d",
                            current, SCHEMA_VERSION,
                        )
                        for version in range(current + 1, SCHEMA_VERSION + 1):
                            MIGRATIONS[version](conn)
                        if row is None:
                            conn.execute(
                                "INSERT INTO schema_version (version) VALUES (?)",
                                (SCHEMA_VERSION,),
                            )
                        else:
                            conn.execute(
                                "UPDATE schema_version SET version = ?",
                                (SCHEMA_VERSION,),
                            )
                    conn.execute("COMMIT")
                except BaseException:
                    # SQLite may already have rolled back on a hard error
                    if conn.in_transaction:
                        conn.execute("ROLLBACK")
                    raise
        except sqlite3.Error as e:
            raise StorageError(f"Failed to migrate database {self._db_path}: {e}") from e

        if current < SCHEMA_VERSION:
            logger.info("Database migration completed")
        return SCHEMA_VERSION

    def schema_version(self) -> int:
        """Stored schema version (0 for a database never migrated)."""
        try:
            with self._pool.connection() as conn:
                exists = conn.execute(
                    "SELECT 1 FROM sqlite_master WHERE type='table' AND name='schema_version'"
                ).fetchone()
                if exists is None:
                    return 0
                row = conn.execute("SELECT version FROM schema_version LIMIT 1").fetchone()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to read schema version: {e}") from e
        return row["version"] if row is not None else 0

    # -------------------------------------------------------------------------
    # Write Operations
    # -------------------------------------------------------------------------

    def append(
        self,
        text: str,
        category: Optional[str] = None,
        tags: Optional[str] = None,
        context: Optional[str] = None,
    ) -> int:
        """
        Record one event stamped with the current UTC time.

        Args:
            text: The recorded command line
            category: Classifier category, if any
            tags: Classifier tags (comma-separated), if any
            context: Classifier context description, if any

        Returns:
            The id assigned to the new event
        """
        if not text or not text.strip():
            raise ValueError("Event text must not be empty")

        timestamp = format_utc_timestamp(utc_now())
        try:
            with self._pool.connection() as conn:
                cursor = conn.execute("""
                    INSERT INTO events (timestamp, text, category, tags, context)
                    VALUES (?, ?, ?, ?, ?)
                """, (timestamp, text, category, tags, context))
                return cursor.lastrowid
        except sqlite3.Error as e:
            raise StorageError(f"Failed to record event: {e}") from e

    def set_status(self, active: bool) -> None:
        """Set the advisory daemon-active flag."""
        try:
            with self._pool.connection() as conn:
                conn.execute(
                    "UPDATE daemon_status SET is_active = ? WHERE id = 1",
                    (1 if active else 0,),
                )
        except sqlite3.Error as e:
            raise StorageError(f"Failed to update daemon status: {e}") from e

    # -------------------------------------------------------------------------
    # Read Operations
    # -------------------------------------------------------------------------

    def get_status(self) -> bool:
        """Read the advisory daemon-active flag."""
        try:
            with self._pool.connection() as conn:
                row = conn.execute(
                    "SELECT is_active FROM daemon_status WHERE id = 1"
                ).fetchone()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to get daemon status: {e}") from e
        if row is None:
            raise StorageError("Daemon status row missing; run migrate() first")
        return bool(row["is_active"])

    def recent(self, limit: int) -> list[Event]:
        """
        Most recent events first.

        Ties on timestamp are broken by id, newest first.
        """
        if limit <= 0:
            return []
        try:
            with self._pool.connection() as conn:
                rows = conn.execute(f"""
                    SELECT {_EVENT_COLUMNS}
                    FROM events
                    ORDER BY timestamp DESC, id DESC
                    LIMIT ?
                """, (limit,)).fetchall()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to read recent events: {e}") from e
        return [_row_to_event(row) for row in rows]

    def search(self, keyword: str) -> list[Event]:
        """
        Case-insensitive substring search over text and classification.

        An empty keyword matches every row; callers that want "no
        keyword means recent" must check for emptiness themselves.

        Returns:
            Up to SEARCH_LIMIT events, most recent first
        """
        pattern = f"%{_escape_like(keyword)}%"
        try:
            with self._pool.connection() as conn:
                rows = conn.execute(f"""
                    SELECT {_EVENT_COLUMNS}
                    FROM events
                    WHERE text LIKE ?1 ESCAPE '\\'
                       OR category LIKE ?1 ESCAPE '\\'
                       OR tags LIKE ?1 ESCAPE '\\'
                       OR context LIKE ?1 ESCAPE '\\'
                    ORDER BY timestamp DESC, id DESC
                    LIMIT ?2
                """, (pattern, SEARCH_LIMIT)).fetchall()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to search events: {e}") from e
        return [_row_to_event(row) for row in rows]

    def count(self) -> int:
        """Count recorded events."""
        try:
            with self._pool.connection() as conn:
                return conn.execute("SELECT COUNT(*) FROM events").fetchone()[0]
        except sqlite3.Error as e:
            raise StorageError(f"Failed to count events: {e}") from e

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def close(self) -> None:
        """Close all pooled connections."""
        self._pool.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
