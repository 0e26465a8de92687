import time

import pytest

from kv_store import MemoryKeyValueStore, SQLiteKeyValueStore


@pytest.fixture(params=["memory", "sqlite"])
def store(request, tmp_path):
    if request.param == "memory":
        return MemoryKeyValueStore()
    return SQLiteKeyValueStore(str(tmp_path / "kv" / "store.db"))


def test_set_get_delete(store):
    assert store.exists("k") is False
    assert store.get("k") is None

    store.set_with_expiry("k", "v1", 60)
    assert store.exists("k") is True
    assert store.get("k") == "v1"

    store.set_with_expiry("k", "v2", 60)
    assert store.get("k") == "v2"

    store.delete("k")
    assert store.get("k") is None
    store.delete("k")


def test_values_expire_on_their_own(store):
    store.set_with_expiry("k", "v", 0.05)
    time.sleep(0.1)
    assert store.exists("k") is False
    assert store.get("k") is None


def test_set_if_absent_claims_once(store):
    assert store.set_if_absent("k", "first", 60) is True
    assert store.set_if_absent("k", "second", 60) is False
    assert store.get("k") == "first"


def test_set_if_absent_reclaims_expired_key(store):
    store.set_with_expiry("k", "stale", 0.05)
    time.sleep(0.1)
    assert store.set_if_absent("k", "fresh", 60) is True
    assert store.get("k") == "fresh"


def test_sqlite_store_is_shared_between_instances(tmp_path):
    path = str(tmp_path / "shared.db")
    writer = SQLiteKeyValueStore(path)
    reader = SQLiteKeyValueStore(path)

    writer.set_with_expiry("semaphore-x", "ticket", 60)

    assert reader.get("semaphore-x") == "ticket"


def test_delete_if_equals_only_removes_matching_value(store):
    store.set_with_expiry("k", "mine", 60)

    assert store.delete_if_equals("k", "theirs") is False
    assert store.get("k") == "mine"

    assert store.delete_if_equals("k", "mine") is True
    assert store.get("k") is None
    assert store.delete_if_equals("k", "mine") is False


def test_delete_if_equals_ignores_expired_value(store):
    store.set_with_expiry("k", "mine", 0.05)
    time.sleep(0.1)
    assert store.delete_if_equals("k", "mine") is False
