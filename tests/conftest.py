"""
Shared pytest fixtures for remindr tests.

Every test gets its own state directory via REMINDR_HOME so nothing
touches ~/.remindr.
"""

import pytest

from remindr.config import RemindrConfig, save_config
from remindr.event_store import EventStore


class FakeInspector:
    """
    Process inspector with a scripted set of live pids.

    terminate() removes the pid from `alive`, or raises `terminate_error`
    when one is set. With `ignore_terminate` the pid stays alive.
    `start_times` maps pids to a create_time; unknown pids report None.
    """

    def __init__(self, alive=None):
        self.alive = set(alive or ())
        self.terminated: list[int] = []
        self.start_times: dict[int, float] = {}
        self.exists_error: Exception | None = None
        self.terminate_error: Exception | None = None
        self.ignore_terminate = False

    def exists(self, pid: int) -> bool:
        if self.exists_error is not None:
            raise self.exists_error
        return pid in self.alive

    def create_time(self, pid: int) -> float | None:
        return self.start_times.get(pid)

    def terminate(self, pid: int) -> None:
        if self.terminate_error is not None:
            raise self.terminate_error
        if pid not in self.alive:
            raise ProcessLookupError(3, "No such process")
        self.terminated.append(pid)
        if not self.ignore_terminate:
            self.alive.discard(pid)


@pytest.fixture
def state_dir(tmp_path, monkeypatch):
    """Empty state directory, exported as REMINDR_HOME."""
    home = tmp_path / "remindr-home"
    home.mkdir()
    monkeypatch.setenv("REMINDR_HOME", str(home))
    return home


@pytest.fixture
def history_file(tmp_path, monkeypatch):
    """Empty history file, exported as REMINDR_HISTFILE."""
    path = tmp_path / "history"
    path.write_text("")
    monkeypatch.setenv("REMINDR_HISTFILE", str(path))
    return path


@pytest.fixture
def config(state_dir, history_file) -> RemindrConfig:
    """Saved config with fast daemon timings."""
    config = RemindrConfig(path=state_dir, history_path=history_file)
    config.daemon.poll_interval = 0.05
    config.daemon.error_backoff = 0.05
    config.daemon.stop_timeout = 1.0
    save_config(config)
    return config


@pytest.fixture
def store(tmp_path):
    """Migrated event store, closed after the test."""
    store = EventStore(tmp_path / "history.db")
    store.migrate()
    yield store
    store.close()


@pytest.fixture
def inspector():
    return FakeInspector()

