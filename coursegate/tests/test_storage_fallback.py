"""Tests for the primary -> secondary storage fallback."""

import pytest
from sqlalchemy import insert

from coursegate.conftest import FailingStore
from coursegate.core.database import get_db_session, kv_entries
from coursegate.core.errors import StoreSecurityError
from coursegate.features.storage.service import FallbackStorage
from coursegate.features.storage.stores import MemoryKeyValueStore


def test_write_and_read_use_primary(storage, primary, secondary):
    result = storage.write("greeting", "hello")
    assert result.ok
    assert result.tier == "primary"
    assert result.durable
    assert not result.durability_warning

    read = storage.read("greeting")
    assert read.ok and read.found
    assert read.value == "hello"
    assert read.tier == "primary"
    assert primary.get("greeting") == "hello"
    assert secondary.get("greeting") is None


def test_sql_store_overwrites_existing_key(primary):
    primary.set("k", "one")
    primary.set("k", "two")
    assert primary.get("k") == "two"
    primary.remove("k")
    assert primary.get("k") is None


def test_primary_failure_falls_back_to_secondary(degraded_storage, secondary):
    result = degraded_storage.write("greeting", "hello")
    assert result.ok
    assert result.tier == "secondary"
    assert not result.durable
    assert result.durability_warning
    assert secondary.get("greeting") == "hello"

    read = degraded_storage.read("greeting")
    assert read.ok and read.found
    assert read.value == "hello"
    assert read.tier == "secondary"


def test_primary_miss_consults_secondary(storage, secondary):
    secondary.set("only-here", "value")
    read = storage.read("only-here")
    assert read.found
    assert read.value == "value"
    assert read.tier == "secondary"


def test_missing_key_is_ok_not_found(storage):
    read = storage.read("nope")
    assert read.ok
    assert not read.found
    assert read.value is None


def test_unreadable_secondary_after_primary_miss_is_not_an_error(primary):
    storage = FallbackStorage(primary, FailingStore())
    read = storage.read("nope")
    assert read.ok
    assert not read.found


def test_both_stores_failing_is_reported(broken_storage):
    read = broken_storage.read("anything")
    assert not read.ok
    assert read.error_code == "storage_error"

    write = broken_storage.write("anything", "x")
    assert not write.ok
    assert write.error_code == "storage_error"


def test_security_fault_is_classified():
    storage = FallbackStorage(FailingStore(StoreSecurityError("denied")), FailingStore(StoreSecurityError("denied")))
    assert storage.write("k", "v").error_code == "security_error"


def test_quota_on_secondary_is_classified():
    storage = FallbackStorage(FailingStore(), MemoryKeyValueStore(quota_bytes=16))
    result = storage.write("key", "x" * 64)
    assert not result.ok
    assert result.error_code == "storage_quota_exceeded"


def test_read_json_flags_malformed_content(storage, primary):
    primary.set("doc", "{not json")
    result = storage.read_json("doc")
    assert result.ok and result.found
    assert result.malformed
    assert result.value is None


def test_json_round_trip(storage):
    storage.write_json("doc", {"a": [1, 2], "b": "ö"})
    assert storage.read_json("doc").value == {"a": [1, 2], "b": "ö"}


def test_remove_clears_both_stores(storage, primary, secondary):
    primary.set("k", "1")
    secondary.set("k", "2")
    assert storage.remove("k").ok
    assert primary.get("k") is None
    assert secondary.get("k") is None


def test_remove_fails_only_when_both_fail(broken_storage, degraded_storage):
    assert not broken_storage.remove("k").ok
    assert degraded_storage.remove("k").ok


def test_sql_store_reuses_one_session_factory(primary):
    factory = primary.session_factory
    primary.set("k", "v")
    primary.get("k")
    assert primary.session_factory is factory
    assert factory.kw["bind"] is primary.engine


def test_session_rolls_back_on_error(primary):
    primary.get("warm-up")  # creates the table
    with pytest.raises(RuntimeError):
        with get_db_session(primary.session_factory) as session:
            session.execute(insert(kv_entries).values(key="k", value="v"))
            raise RuntimeError("abort")
    assert primary.get("k") is None
