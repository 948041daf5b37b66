import json
import sys
import threading
from pathlib import Path
import pytest

repo_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(repo_root))

import utils
from utils import LocalStorage, LoadStatus


@pytest.fixture
def storage(tmp_path):
    return LocalStorage(tmp_path / "storefront.json")


def test_concurrent_writers_to_different_keys_keep_every_key(storage):
    storage.set_item(utils.ACCESS_TOKEN_KEY, "token-123")
    start = threading.Barrier(4)

    def writer(n):
        start.wait()
        for i in range(200):
            storage.set_item(f"k{n}", str(i))

    threads = [threading.Thread(target=writer, args=(n,)) for n in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert storage.get_item(utils.ACCESS_TOKEN_KEY) == "token-123"
    assert [storage.get_item(f"k{n}") for n in range(4)] == ["199"] * 4


def test_separate_instances_on_one_file_share_the_lock(tmp_path):
    path = tmp_path / "storefront.json"
    first, second = LocalStorage(path), LocalStorage(path)

    def writer(store, key):
        for i in range(100):
            store.set_item(key, str(i))

    threads = [
        threading.Thread(target=writer, args=(first, "a")),
        threading.Thread(target=writer, args=(second, "b")),
    ]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert json.loads(path.read_text(encoding="utf-8")) == {"a": "99", "b": "99"}


def test_write_leaves_no_temp_files(storage, tmp_path):
    storage.set_items({"a": "1", "b": "2"})
    storage.remove_item("a")
    assert [p.name for p in tmp_path.iterdir()] == ["storefront.json"]
    assert storage.get_item("b") == "2"


def test_failed_write_keeps_previous_contents(storage, monkeypatch):
    storage.set_item("a", "1")

    def broken_dump(*args, **kwargs):
        raise OSError("disk full")

    monkeypatch.setattr(utils.json, "dump", broken_dump)
    with pytest.raises(OSError):
        storage.set_item("b", "2")
    monkeypatch.undo()

    assert storage.get_item("a") == "1"
    assert storage.get_item("b") is None
    assert [p.name for p in storage.path.parent.iterdir()] == ["storefront.json"]


def test_load_json_statuses(storage):
    assert storage.load_json("missing").status is LoadStatus.EMPTY
    storage.set_item("bad", "{nope")
    assert storage.load_json("bad").status is LoadStatus.CORRUPT
    storage.save_json("good", {"x": 1})
    loaded = storage.load_json("good")
    assert loaded.ok and loaded.value == {"x": 1}
