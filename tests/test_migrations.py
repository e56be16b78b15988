"""
Schema migration tests for EventStore.

Each test builds a database in a known state with raw SQL, then opens it
via EventStore and checks what migrate() does with it.
"""

import sqlite3
from pathlib import Path

import pytest

from remindr import event_store
from remindr.errors import StorageError
from remindr.event_store import SCHEMA_VERSION, EventStore


def _tables(path: Path) -> set[str]:
    conn = sqlite3.connect(str(path))
    try:
        rows = conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table'"
        ).fetchall()
    finally:
        conn.close()
    return {row[0] for row in rows}


def _stored_version(path: Path) -> int:
    conn = sqlite3.connect(str(path))
    try:
        return conn.execute("SELECT version FROM schema_version").fetchone()[0]
    finally:
        conn.close()


class TestFreshDatabase:

    def test_creates_schema(self, tmp_path):
        db_path = tmp_path / "history.db"
        with EventStore(db_path) as store:
            assert store.schema_version() == 0
            assert store.migrate() == SCHEMA_VERSION
            assert store.schema_version() == SCHEMA_VERSION
        assert {"events", "daemon_status", "schema_version"} <= _tables(db_path)

    def test_creates_parent_directory(self, tmp_path):
        db_path = tmp_path / "nested" / "dir" / "history.db"
        with EventStore(db_path) as store:
            store.migrate()
        assert db_path.exists()

    def test_single_status_row(self, tmp_path):
        db_path = tmp_path / "history.db"
        with EventStore(db_path) as store:
            store.migrate()
        conn = sqlite3.connect(str(db_path))
        try:
            assert conn.execute("SELECT COUNT(*) FROM daemon_status").fetchone()[0] == 1
            with pytest.raises(sqlite3.IntegrityError):
                conn.execute("INSERT INTO daemon_status (id, is_active) VALUES (2, 0)")
        finally:
            conn.close()


class TestIdempotence:

    def test_migrate_twice(self, tmp_path):
        db_path = tmp_path / "history.db"
        with EventStore(db_path) as store:
            store.migrate()
            store.append("git status")
            store.set_status(True)
            store.migrate()
            assert store.count() == 1
            assert store.get_status() is True
        assert _stored_version(db_path) == SCHEMA_VERSION

    def test_reopen_keeps_data(self, tmp_path):
        db_path = tmp_path / "history.db"
        with EventStore(db_path) as store:
            store.migrate()
            store.append("ls")
        with EventStore(db_path) as store:
            store.migrate()
            assert [e.text for e in store.recent(5)] == ["ls"]

    def test_single_version_row(self, tmp_path):
        db_path = tmp_path / "history.db"
        for _ in range(3):
            with EventStore(db_path) as store:
                store.migrate()
        conn = sqlite3.connect(str(db_path))
        try:
            assert conn.execute("SELECT COUNT(*) FROM schema_version").fetchone()[0] == 1
        finally:
            conn.close()


class TestFailures:

    def test_newer_schema_rejected(self, tmp_path):
        db_path = tmp_path / "history.db"
        with EventStore(db_path) as store:
            store.migrate()
        conn = sqlite3.connect(str(db_path))
        conn.execute("UPDATE schema_version SET version = ?", (SCHEMA_VERSION + 1,))
        conn.commit()
        conn.close()

        with EventStore(db_path) as store:
            with pytest.raises(StorageError, match="newer"):
                store.migrate()
        assert _stored_version(db_path) == SCHEMA_VERSION + 1

    def test_corrupt_file_raises_storage_error(self, tmp_path):
        db_path = tmp_path / "history.db"
        db_path.write_bytes(b"this is not a sqlite database" * 100)
        with EventStore(db_path) as store:
            with pytest.raises(StorageError):
                store.migrate()

    def test_failed_step_rolls_back(self, tmp_path, monkeypatch):
        """A failing migration step leaves the database untouched."""

        def broken_step(conn):
            conn.execute("CREATE TABLE half_done (x INTEGER)")
            conn.execute("INSERT INTO no_such_table VALUES (1)")

        monkeypatch.setitem(event_store.MIGRATIONS, 1, broken_step)

        db_path = tmp_path / "history.db"
        with EventStore(db_path) as store:
            with pytest.raises(StorageError):
                store.migrate()
            assert store.schema_version() == 0

        assert "half_done" not in _tables(db_path)
