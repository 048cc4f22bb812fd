"""
Tests for per-user follow-up state.
"""

from unittest.mock import patch

from modules.followup import FollowUpStore, PendingQuestion


class TestFollowUpStore:

    def setup_method(self):
        self.store = FollowUpStore()

    def test_pop_consumes_once(self):
        self.store.set("user-1", PendingQuestion("confirm_delete", "Are you sure?"))

        assert self.store.pop("user-1").kind == "confirm_delete"
        assert self.store.pop("user-1") is None

    def test_newer_entry_replaces_older(self):
        self.store.set("user-1", "first")
        self.store.set("user-1", "second")

        assert self.store.get("user-1") == "second"

    def test_users_are_isolated(self):
        self.store.set("user-1", "value")

        assert not self.store.has("user-2")
        self.store.clear("user-2")
        assert self.store.has("user-1")

    def test_clear_all(self):
        self.store.set("user-1", "a")
        self.store.set("user-2", "b")

        self.store.clear()

        assert not self.store.has("user-1")
        assert not self.store.has("user-2")

    def test_entries_expire(self):
        store = FollowUpStore(ttl_seconds=60)
        with patch("modules.followup.time.monotonic", return_value=1000.0):
            store.set("user-1", "value")

        with patch("modules.followup.time.monotonic", return_value=1030.0):
            assert store.get("user-1") == "value"

        with patch("modules.followup.time.monotonic", return_value=1061.0):
            assert store.get("user-1") is None
            assert store.pop("user-1") is None
