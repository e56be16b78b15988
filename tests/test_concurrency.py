"""
Concurrency tests for EventStore.

Verifies that several processes can append to the same database at once,
the real scenario when the daemon writes while shell hooks record too.

Uses multiprocessing (not threading) to simulate separate remindr processes.
"""

import multiprocessing
import threading
import time
from pathlib import Path

import pytest

from remindr.errors import StorageError
from remindr.event_store import EventStore
from remindr.pool import ConnectionPool


# Worker functions must be top-level for multiprocessing spawn compatibility


def _worker_append(db_path: str, worker_id: int, count: int):
    """Worker that appends distinct commands."""
    from remindr.event_store import EventStore
    store = EventStore(Path(db_path))
    try:
        for i in range(count):
            store.append(f"echo worker{worker_id} cmd{i}")
    finally:
        store.close()


def _worker_migrate(db_path: str):
    """Worker that opens and migrates a store."""
    from remindr.event_store import EventStore
    store = EventStore(Path(db_path))
    try:
        store.migrate()
    finally:
        store.close()


class TestConcurrentWrites:
    """Multiple processes writing to the same EventStore."""

    def test_parallel_appends_no_data_loss(self, tmp_path):
        """8 workers each append 20 commands; all 160 must be present."""
        db_path = str(tmp_path / "history.db")
        num_workers = 8
        per_worker = 20

        # Pre-create the schema so migrations don't race with writes
        with EventStore(Path(db_path)) as store:
            store.migrate()

        ctx = multiprocessing.get_context("spawn")
        processes = [
            ctx.Process(target=_worker_append, args=(db_path, w, per_worker))
            for w in range(num_workers)
        ]
        for p in processes:
            p.start()
        for p in processes:
            p.join(timeout=60)

        for p in processes:
            assert p.exitcode == 0, f"Worker exited with code {p.exitcode}"

        with EventStore(Path(db_path)) as store:
            assert store.count() == num_workers * per_worker
            events = store.recent(num_workers * per_worker)
        texts = {e.text for e in events}
        assert len(texts) == num_workers * per_worker
        assert len({e.id for e in events}) == num_workers * per_worker

    def test_parallel_migrations(self, tmp_path):
        """Racing first-time migrations all succeed and leave one schema."""
        db_path = str(tmp_path / "history.db")

        ctx = multiprocessing.get_context("spawn")
        processes = [ctx.Process(target=_worker_migrate, args=(db_path,)) for _ in range(4)]
        for p in processes:
            p.start()
        for p in processes:
            p.join(timeout=60)

        for p in processes:
            assert p.exitcode == 0

        with EventStore(Path(db_path)) as store:
            store.append("ls")
            assert store.count() == 1
            assert store.get_status() is False

    def test_threads_share_one_store(self, store):
        """Threads appending through one handle never exceed the pool."""
        errors = []

        def work(n):
            try:
                for i in range(25):
                    store.append(f"thread{n} {i}")
                    store.recent(5)
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=work, args=(n,)) for n in range(16)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=60)

        assert errors == []
        assert store.count() == 16 * 25
        assert store._pool.size <= store._pool.max_size


class TestConnectionPool:
    """The pool hands out at most max_size connections."""

    def test_reuses_connections(self, tmp_path):
        pool = ConnectionPool(tmp_path / "pool.db", max_size=3)
        for _ in range(10):
            with pool.connection() as conn:
                conn.execute("SELECT 1")
        assert pool.size == 1
        pool.close()

    def test_exhausted_pool_times_out(self, tmp_path):
        pool = ConnectionPool(tmp_path / "pool.db", max_size=2, timeout=0.2)
        with pool.connection(), pool.connection():
            assert pool.size == 2
            start = time.monotonic()
            with pytest.raises(StorageError, match="Timed out"):
                with pool.connection():
                    pass
            assert time.monotonic() - start >= 0.15
        pool.close()

    def test_waiter_gets_released_connection(self, tmp_path):
        pool = ConnectionPool(tmp_path / "pool.db", max_size=1, timeout=5.0)
        got = []

        def waiter():
            with pool.connection() as conn:
                got.append(conn)

        with pool.connection() as held:
            t = threading.Thread(target=waiter)
            t.start()
            time.sleep(0.1)
            assert got == []
        t.join(timeout=5)

        assert got == [held]
        assert pool.size == 1
        pool.close()

    def test_open_transaction_rolled_back_on_release(self, tmp_path):
        pool = ConnectionPool(tmp_path / "pool.db", max_size=1)
        with pool.connection() as conn:
            conn.execute("CREATE TABLE t (x INTEGER)")
        with pool.connection() as conn:
            conn.execute("BEGIN")
            conn.execute("INSERT INTO t VALUES (1)")
        with pool.connection() as conn:
            assert not conn.in_transaction
            assert conn.execute("SELECT COUNT(*) FROM t").fetchone()[0] == 0
        pool.close()

    def test_invalid_size(self, tmp_path):
        with pytest.raises(ValueError):
            ConnectionPool(tmp_path / "pool.db", max_size=0)

    def test_closed_pool_refuses(self, tmp_path):
        pool = ConnectionPool(tmp_path / "pool.db")
        with pool.connection():
            pass
        pool.close()
        assert pool.closed
        assert pool.size == 0
        with pytest.raises(StorageError):
            with pool.connection():
                pass
