"""
Unit tests for policy row storage.
"""

import time

import pytest

from enforcement.policy import PolicyStore


class TestPolicyStore:
    """Test cases for PolicyStore."""

    @pytest.fixture
    def store(self):
        """Create store with a few rows."""
        store = PolicyStore()
        store.add("p", ["alice", "/data1", "read"])
        store.add("p", ["bob", "/data2", "write"])
        store.add("p", ["alice", "/data2", "read"])
        return store

    def test_insertion_order(self, store):
        """Test rows keep insertion order."""
        assert store.get_all("p") == [
            ("alice", "/data1", "read"),
            ("bob", "/data2", "write"),
            ("alice", "/data2", "read"),
        ]

    def test_duplicates_allowed_by_default(self, store):
        """Test duplicate rows are kept unless the key is unique."""
        assert store.add("p", ["alice", "/data1", "read"]) is True
        assert store.count("p") == 4

    def test_unique_rejects_duplicates(self, store):
        """Test uniqueness per key."""
        store.set_unique("p")

        assert store.add("p", ["alice", "/data1", "read"]) is False
        assert store.count("p") == 3

    def test_add_many_all_or_nothing(self, store):
        """Test a batch with one duplicate adds nothing on a unique key."""
        store.set_unique("p")

        assert store.add_many("p", [["carol", "/x", "read"], ["bob", "/data2", "write"]]) is False
        assert store.count("p") == 3
        assert store.add_many("p", [["carol", "/x", "read"], ["dave", "/y", "read"]]) is True
        assert store.count("p") == 5

    def test_remove(self, store):
        """Test removing present and absent rows."""
        assert store.remove("p", ["bob", "/data2", "write"]) is True
        assert store.remove("p", ["bob", "/data2", "write"]) is False
        assert store.has("p", ["bob", "/data2", "write"]) is False

    def test_remove_many_all_or_nothing(self, store):
        """Test a batch with one absent row removes nothing."""
        assert store.remove_many("p", [["bob", "/data2", "write"], ["ghost", "/x", "read"]]) is False
        assert store.count("p") == 3

    def test_remove_filtered(self, store):
        """Test filtered removal with a wildcard field."""
        removed = store.remove_filtered("p", 0, "alice", "", "read")

        assert removed == [("alice", "/data1", "read"), ("alice", "/data2", "read")]
        assert store.get_all("p") == [("bob", "/data2", "write")]

    def test_update_keeps_position(self, store):
        """Test update replaces in place."""
        assert store.update("p", ["bob", "/data2", "write"], ["bob", "/data3", "write"]) is True

        assert store.get_all("p")[1] == ("bob", "/data3", "write")

    def test_update_rejects_duplicate(self, store):
        """Test update cannot create a duplicate on a unique key."""
        store.set_unique("p")

        assert store.update("p", ["bob", "/data2", "write"], ["alice", "/data1", "read"]) is False
        assert store.update("p", ["ghost", "/x", "read"], ["ghost", "/y", "read"]) is False

    def test_update_many(self, store):
        """Test batch update."""
        assert store.update_many(
            "p",
            [["alice", "/data1", "read"], ["alice", "/data2", "read"]],
            [["alice", "/data1", "write"], ["alice", "/data2", "write"]],
        ) is True
        assert store.field_values("p", 2) == ["write"]

    def test_filter_index_tracks_mutations(self, store):
        """Test the lazy field index is rebuilt after mutation."""
        assert store.filter("p", 0, "alice") == [("alice", "/data1", "read"), ("alice", "/data2", "read")]

        store.add("p", ["alice", "/data3", "read"])
        store.remove("p", ["alice", "/data1", "read"])

        assert store.filter("p", 0, "alice") == [("alice", "/data2", "read"), ("alice", "/data3", "read")]

    def test_get_filtered(self, store):
        """Test non-indexed filtering across several fields."""
        assert store.get_filtered("p", 1, "/data2", "read") == [("alice", "/data2", "read")]
        assert store.get_filtered("p", 5, "x") == []

    def test_field_values(self, store):
        """Test distinct field values in first-seen order."""
        assert store.field_values("p", 0) == ["alice", "bob"]

    def test_copy_is_independent(self, store):
        """Test copies do not share rows."""
        store.set_unique("p")
        other = store.copy()
        other.add("p", ["carol", "/x", "read"])

        assert store.count("p") == 3
        assert other.count("p") == 4
        assert other.is_unique("p") is True

    def test_clear(self, store):
        """Test clearing one key and all keys."""
        store.add("g", ["alice", "admin"])
        store.clear("p")

        assert store.keys() == ["g"]
        store.clear()
        assert store.count() == 0

    def test_membership_counts_duplicates(self, store):
        """Test has() stays true until the last duplicate is removed."""
        row = ["alice", "/data1", "read"]
        store.add("p", row)

        assert store.remove("p", row) is True
        assert store.has("p", row) is True
        assert store.remove("p", row) is True
        assert store.has("p", row) is False

    def test_remove_many_respects_multiplicity(self, store):
        """Test removing a row twice needs two stored copies."""
        row = ["bob", "/data2", "write"]

        assert store.remove_many("p", [row, row]) is False
        assert store.count("p") == 3

        store.add("p", row)
        assert store.remove_many("p", [row, row]) is True
        assert store.has("p", row) is False
        assert store.get_all("p") == [("alice", "/data1", "read"), ("alice", "/data2", "read")]

    def test_membership_after_filtered_remove_and_update(self, store):
        """Test has() follows filtered removal and updates."""
        store.set_unique("p")
        store.remove_filtered("p", 0, "alice")
        store.update("p", ["bob", "/data2", "write"], ["bob", "/data3", "write"])

        assert store.has("p", ["alice", "/data1", "read"]) is False
        assert store.has("p", ["bob", "/data2", "write"]) is False
        assert store.has("p", ["bob", "/data3", "write"]) is True
        assert store.add("p", ["alice", "/data1", "read"]) is True
        assert store.add("p", ["bob", "/data3", "write"]) is False

    def test_unique_bulk_load_scales(self):
        """Test loading many rows into a unique key stays linear."""
        store = PolicyStore()
        store.set_unique("p")
        rows = [[f"user{i}", f"/data{i}", "read"] for i in range(20000)]

        start = time.perf_counter()
        for row in rows:
            assert store.add("p", row) is True
        elapsed = time.perf_counter() - start

        assert store.count("p") == 20000
        assert store.add("p", rows[-1]) is False
        assert elapsed < 2.0
