"""Tests for the key-value stores and the JSON list helpers."""

import json

import pytest

from errors import PersistenceWriteError
from storage import (
    FileStore, MemoryStore, cleanup_temp, open_store, read_json_list, redactions_key,
    remove_key, versions_key, write_json_list
)


def test_key_builders():
    assert redactions_key("rec1", "a.pdf") == "redactions_rec1_a.pdf"
    assert versions_key("rec1", "a.pdf") == "redaction_versions_rec1_a.pdf"


def test_memory_store_basics():
    store = MemoryStore()
    assert store.get_item("k") is None
    store.set_item("k", "v")
    assert store.get_item("k") == "v"
    assert "k" in store
    assert list(store.keys()) == ["k"]
    store.remove_item("k")
    store.remove_item("k")
    assert store.get_item("k") is None


def test_file_store_round_trip(tmp_path):
    store = FileStore(tmp_path / "data")
    key = redactions_key("rec/1", "scans/page one.pdf")

    store.set_item(key, '[{"a": 1}]')

    assert store.get_item(key) == '[{"a": 1}]'
    assert list(store.keys()) == [key]
    assert not list((tmp_path / "data").glob("*.tmp"))


def test_file_store_overwrite_and_remove(tmp_path):
    store = FileStore(tmp_path)
    store.set_item("k", "first")
    store.set_item("k", "second")
    assert store.get_item("k") == "second"

    store.remove_item("k")
    store.remove_item("k")
    assert store.get_item("k") is None


def test_file_store_handles_unicode(tmp_path):
    store = FileStore(tmp_path)
    store.set_item("ключ", json.dumps(["é"], ensure_ascii=False))
    assert json.loads(store.get_item("ключ")) == ["é"]


def test_cleanup_temp_removes_file_and_ignores_missing(tmp_path):
    temp = tmp_path / "partial.tmp"
    temp.write_text("half", encoding="utf-8")

    cleanup_temp(temp)
    cleanup_temp(temp)

    assert not temp.exists()


def test_open_store_picks_backend(tmp_path):
    assert isinstance(open_store(None), MemoryStore)
    assert isinstance(open_store(tmp_path), FileStore)


@pytest.mark.parametrize("raw", [None, "", "not json", '{"a": 1}', "42"])
def test_read_json_list_degrades_to_empty(raw):
    store = MemoryStore()
    if raw is not None:
        store.set_item("k", raw)
    assert read_json_list(store, "k") == []


def test_read_json_list_reads_undecodable_file_as_empty(tmp_path):
    store = FileStore(tmp_path)
    store.set_item("k", "[]")
    store._path_for("k").write_bytes(b"\xff\xfe\x00garbage")
    assert read_json_list(store, "k") == []


def test_write_then_read_json_list():
    store = MemoryStore()
    write_json_list(store, "k", [{"x": 1}, {"x": 2}])
    assert read_json_list(store, "k") == [{"x": 1}, {"x": 2}]


def test_write_json_list_wraps_serialization_errors():
    with pytest.raises(PersistenceWriteError) as excinfo:
        write_json_list(MemoryStore(), "k", [object()])
    assert excinfo.value.key == "k"


def test_remove_key_wraps_failures():
    class BrokenStore(MemoryStore):
        def remove_item(self, key):
            raise OSError("disk gone")

    with pytest.raises(PersistenceWriteError, match="disk gone"):
        remove_key(BrokenStore(), "k")
