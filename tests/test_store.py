import json

import pytest
from clinrec.store import FileStore, KeyValueStore, MemoryStore, cache_key, read_json_list


def test_cache_key_format():
    assert cache_key("clinical_history", "P1") == "clinical_history_P1"
    with pytest.raises(ValueError):
        cache_key("clinical_history", "")


@pytest.mark.parametrize("factory", [lambda tmp: MemoryStore(), lambda tmp: FileStore(tmp / "cache")])
def test_store_get_set_remove(tmp_path, factory):
    store = factory(tmp_path)
    assert isinstance(store, KeyValueStore)
    assert store.get("k") is None
    store.set("k", "value")
    assert store.get("k") == "value"
    store.remove("k")
    assert store.get("k") is None
    # removing a missing key is fine
    store.remove("k")


def test_file_store_keeps_keys_apart(tmp_path):
    store = FileStore(tmp_path)
    store.set("clinical_history_a/b", "1")
    store.set("clinical_history_a-b", "2")
    assert store.get("clinical_history_a/b") == "1"
    assert store.get("clinical_history_a-b") == "2"


def test_read_json_list(store):
    store.set("good", json.dumps([{"hb": "1"}]))
    store.set("broken", "{not json")
    store.set("object", json.dumps({"hb": "1"}))
    assert read_json_list(store, "good") == [{"hb": "1"}]
    assert read_json_list(store, "broken") == []
    assert read_json_list(store, "object") == []
    assert read_json_list(store, "missing") == []


def test_memory_store_keys():
    store = MemoryStore({"b": "2"})
    store.set("a", "1")
    assert store.keys() == ["a", "b"]
    store.remove("b")
    assert store.keys() == ["a"]
