# SPDX-License-Identifier: Apache-2.0

"""
Tests for the key-value store abstraction and its in-memory backend.
"""

import pytest
from concurrent.futures import ThreadPoolExecutor

from services.kv_store import InMemoryKeyValueStore, VersionedValue, create_store


class TestConditionalWrites:
    """The two primitives every engine component relies on."""

    def test_set_if_absent_creates_at_version_one(self, store):
        assert store.set_if_absent("k", "v1")
        assert not store.set_if_absent("k", "v2")
        assert store.get("k") == VersionedValue(value="v1", version=1)

    def test_compare_and_set_bumps_version(self, store):
        store.set_if_absent("k", "v1")

        assert store.compare_and_set("k", "v2", 1)
        assert not store.compare_and_set("k", "v3", 1)
        assert store.get("k") == VersionedValue(value="v2", version=2)

    def test_compare_and_set_with_none_requires_absence(self, store):
        assert store.compare_and_set("k", "v1", None)
        assert not store.compare_and_set("k", "v2", None)
        assert store.get("k").version == 1

    def test_compare_and_set_on_missing_key(self, store):
        assert not store.compare_and_set("missing", "v", 1)

    def test_delete_if_version(self, store):
        store.set_if_absent("k", "v1")
        store.compare_and_set("k", "v2", 1)

        assert not store.delete_if_version("k", 1)
        assert store.delete_if_version("k", 2)
        assert store.get("k") is None
        assert not store.exists("k")

    def test_only_one_concurrent_creator_wins(self):
        store = InMemoryKeyValueStore(lock_stripes=4)

        with ThreadPoolExecutor(max_workers=16) as pool:
            results = list(pool.map(lambda i: store.set_if_absent("slot", str(i)), range(64)))

        assert results.count(True) == 1

    def test_concurrent_compare_and_set_never_loses_updates(self):
        store = InMemoryKeyValueStore()
        store.set_if_absent("counter", "0")

        def bump(_):
            while True:
                current = store.get("counter")
                if store.compare_and_set("counter", str(int(current.value) + 1), current.version):
                    return

        with ThreadPoolExecutor(max_workers=8) as pool:
            list(pool.map(bump, range(100)))

        assert store.get("counter").value == "100"
        assert store.get("counter").version == 101


class TestListsAndCounters:

    def test_append_and_read(self, store):
        assert store.append("list", "a") == 1
        assert store.append("list", "b") == 2

        assert store.read_list("list") == ["a", "b"]
        assert store.list_length("list") == 2
        assert store.read_list("other") == []

    def test_read_list_returns_copy(self, store):
        store.append("list", "a")

        store.read_list("list").append("mutated")

        assert store.read_list("list") == ["a"]

    def test_counters(self, store):
        assert store.read_counter("c") == 0
        assert store.increment("c") == 1
        assert store.increment("c", 5) == 6
        assert store.increment("c", -2) == 4


class TestCreateStore:

    def test_memory_backend(self):
        store = create_store("memory")

        assert isinstance(store, InMemoryKeyValueStore)
        assert store.health_check()["status"] == "healthy"

    def test_backend_from_environment(self, monkeypatch):
        monkeypatch.setenv("STORE_BACKEND", "MEMORY")

        assert create_store().backend_name == "memory"

    def test_unknown_backend(self):
        with pytest.raises(ValueError, match="Unknown STORE_BACKEND"):
            create_store("cassandra")

    def test_invalid_lock_stripes(self):
        with pytest.raises(ValueError):
            InMemoryKeyValueStore(lock_stripes=0)
