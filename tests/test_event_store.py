"""
Tests for EventStore: appends, recency ordering, search and the status flag.
"""

from datetime import datetime, timezone

import pytest

from remindr.errors import StorageError
from remindr.event_store import SEARCH_LIMIT, EventStore


class TestAppendAndRecent:
    """Appended events come back newest first."""

    def test_empty_store(self, store):
        assert store.recent(5) == []
        assert store.count() == 0

    def test_append_returns_increasing_ids(self, store):
        first = store.append("echo one")
        second = store.append("echo two")
        assert second > first

    def test_round_trip_fields(self, store):
        event_id = store.append(
            "git status",
            category="Version Control",
            tags="git,development",
            context="Managing git repository",
        )
        [event] = store.recent(1)
        assert event.id == event_id
        assert event.text == "git status"
        assert event.category == "Version Control"
        assert event.tags == "git,development"
        assert event.context == "Managing git repository"
        assert event.timestamp.tzinfo is not None

    def test_unclassified_fields_stay_unset(self, store):
        store.append("make test")
        [event] = store.recent(1)
        assert event.category is None
        assert event.tags is None
        assert event.context is None

    def test_recent_newest_first(self, store):
        for i in range(5):
            store.append(f"cmd {i}")
        texts = [e.text for e in store.recent(3)]
        assert texts == ["cmd 4", "cmd 3", "cmd 2"]

    def test_recent_same_timestamp_breaks_tie_by_id(self, store, monkeypatch):
        """Events sharing a timestamp come back in reverse insertion order."""
        fixed = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)
        monkeypatch.setattr("remindr.event_store.utc_now", lambda: fixed)
        store.append("first")
        store.append("second")
        store.append("third")
        assert [e.text for e in store.recent(10)] == ["third", "second", "first"]

    def test_recent_zero_limit(self, store):
        store.append("ls")
        assert store.recent(0) == []

    def test_empty_text_rejected(self, store):
        with pytest.raises(ValueError):
            store.append("   ")
        assert store.count() == 0

    def test_text_kept_verbatim(self, store):
        """Quotes and unicode are stored as-is, not interpreted."""
        text = "echo 'it''s' \"$HOME\" ✓; rm -rf -- '%_'"
        store.append(text)
        assert store.recent(1)[0].text == text


class TestSearch:
    """Case-insensitive substring search over text and classification."""

    def test_search_matches_text(self, store):
        store.append("git commit -m x")
        store.append("ls -la")
        results = store.search("git")
        assert len(results) == 1
        assert results[0].text == "git commit -m x"

    def test_search_is_case_insensitive(self, store):
        store.append("Docker ps")
        assert [e.text for e in store.search("DOCKER")] == ["Docker ps"]

    def test_search_matches_classification(self, store):
        store.append("make", category="Build", tags="make,c", context="Compiling")
        assert len(store.search("compil")) == 1
        assert len(store.search("make,c")) == 1

    def test_search_caps_results(self, store):
        for i in range(SEARCH_LIMIT + 10):
            store.append(f"echo {i}")
        results = store.search("echo")
        assert len(results) == SEARCH_LIMIT
        assert results[0].text == f"echo {SEARCH_LIMIT + 9}"

    def test_search_empty_keyword_matches_all(self, store):
        store.append("a")
        store.append("b")
        assert len(store.search("")) == 2

    def test_search_no_match(self, store):
        store.append("ls")
        assert store.search("kubectl") == []

    def test_search_wildcards_are_literal(self, store):
        store.append("echo 100%")
        store.append("echo 1000")
        store.append("cat my_file")
        store.append("cat myxfile")
        assert [e.text for e in store.search("0%")] == ["echo 100%"]
        assert [e.text for e in store.search("my_f")] == ["cat my_file"]


class TestStatusFlag:
    """The singleton daemon-active flag."""

    def test_default_inactive(self, store):
        assert store.get_status() is False

    def test_set_and_clear(self, store):
        store.set_status(True)
        assert store.get_status() is True
        store.set_status(False)
        assert store.get_status() is False

    def test_flag_persists_across_handles(self, tmp_path):
        db_path = tmp_path / "history.db"
        with EventStore(db_path) as store:
            store.migrate()
            store.set_status(True)
        with EventStore(db_path) as store:
            assert store.get_status() is True

    def test_unmigrated_store_raises(self, tmp_path):
        with EventStore(tmp_path / "history.db") as store:
            with pytest.raises(StorageError):
                store.get_status()


class TestLifecycle:

    def test_closed_store_raises(self, tmp_path):
        store = EventStore(tmp_path / "history.db")
        store.migrate()
        store.close()
        with pytest.raises(StorageError):
            store.append("ls")

    def test_wal_mode(self, store):
        with store._pool.connection() as conn:
            mode = conn.execute("PRAGMA journal_mode").fetchone()[0]
        assert mode.lower() == "wal"
