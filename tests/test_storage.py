import threading

import pytest

from linemark.documents import FileDocumentReader
from linemark.signals import Signal
from linemark.storage import DiskCacheStorage, MemoryStorage


@pytest.mark.parametrize("make", [MemoryStorage, None], ids=["memory", "diskcache"])
def test_blob_storage_contract(make, tmp_path):
    storage = make() if make else DiskCacheStorage(tmp_path / "store")
    assert storage.get("k") is None
    storage.set("k", b"\x00blob")
    storage.set("other", b"x")
    assert storage.get("k") == b"\x00blob"
    assert storage.keys() == ["k", "other"]
    storage.delete("k")
    storage.delete("k")
    assert storage.get("k") is None
    if make is None:
        storage.close()


def test_diskcache_lock_is_exclusive_across_instances(tmp_path):
    one = DiskCacheStorage(tmp_path / "store")
    two = DiskCacheStorage(tmp_path / "store")
    order = []

    def second():
        with two.lock("bookmarks"):
            order.append("two")

    with one.lock("bookmarks"):
        worker = threading.Thread(target=second)
        worker.start()
        worker.join(0.1)
        order.append("one")
    worker.join()
    assert order == ["one", "two"]
    assert len(list((tmp_path / "store" / "locks").glob("*.lock"))) == 1

    with one.lock("bookmarks"), one.lock("other"):
        pass
    one.close()
    two.close()


def test_diskcache_is_shared_between_instances(tmp_path):
    one = DiskCacheStorage(tmp_path / "store")
    two = DiskCacheStorage(tmp_path / "store")
    one.set("bookmarks", b"v1")
    assert two.get("bookmarks") == b"v1"
    one.close()
    two.close()


def test_reader_overlay_wins_over_disk(tmp_path):
    f = tmp_path / "a.txt"
    f.write_text("on disk\n")
    reader = FileDocumentReader()
    assert reader.read_line(f, 0) == "on disk"
    reader.open_buffer(f, "unsaved\nsecond")
    assert reader.read_lines(f) == ["unsaved", "second"]
    reader.close_buffer(f)
    assert reader.read_line(f, 0) == "on disk"
    assert reader.read_line(f, 5) is None
    assert reader.read_lines(tmp_path / "missing.txt") is None


def test_signal_isolates_failing_listener():
    signal = Signal("test")
    seen = []

    def broken():
        raise RuntimeError("listener bug")

    signal.connect(broken)
    disconnect = signal.connect(lambda: seen.append("ok"))
    signal.emit()
    assert seen == ["ok"]
    disconnect()
    disconnect()
    assert len(signal) == 1
