import asyncio

import pytest
from conftest import make_bookmark

from linemark.codec import BlobCodec
from linemark.config import Settings
from linemark.errors import StorageWriteError
from linemark.gateway import GLOBAL_KEY, PersistenceGateway, storage_key
from linemark.storage import MemoryStorage

KEY = "bookmarks:file:///ws"


class FailingStorage(MemoryStorage):
    def set(self, key, blob):
        raise OSError("disk full")


@pytest.fixture
def gateway(storage):
    return PersistenceGateway(storage, BlobCodec(Settings()))


def _ids(bookmarks):
    return sorted(b.id for b in bookmarks)


def test_storage_key_scopes(tmp_path):
    assert storage_key("global", tmp_path) == GLOBAL_KEY
    assert storage_key("per-workspace", None) == GLOBAL_KEY
    key = storage_key("per-workspace", tmp_path)
    assert key == f"bookmarks:{tmp_path.resolve().as_uri()}"
    assert key != storage_key("per-workspace", tmp_path / "other")


@pytest.mark.asyncio
async def test_save_then_load(gateway):
    written = await gateway.save(KEY, [make_bookmark("a"), make_bookmark("b")])
    assert _ids(written) == ["a", "b"]
    assert _ids(await gateway.load(KEY)) == ["a", "b"]
    assert await gateway.load("bookmarks:file:///elsewhere") == []
    assert not gateway.has_pending(KEY)


@pytest.mark.asyncio
async def test_concurrent_saves_are_merged(gateway):
    x = make_bookmark("x", label="from window 1")
    y = make_bookmark("y", label="from window 2")
    await asyncio.gather(gateway.save(KEY, [x]), gateway.save(KEY, [y]))
    assert _ids(await gateway.load(KEY)) == ["x", "y"]


@pytest.mark.asyncio
async def test_concurrent_saves_keep_most_recent_access(gateway):
    stale = make_bookmark("a", label="older", last_accessed_at=10.0)
    fresh = make_bookmark("a", label="newer", last_accessed_at=20.0)
    await asyncio.gather(gateway.save(KEY, [fresh]), gateway.save(KEY, [stale]))
    [b] = await gateway.load(KEY)
    assert b.label == "newer"


@pytest.mark.asyncio
async def test_removal_survives_racing_save(gateway):
    a, b = make_bookmark("a"), make_bookmark("b")
    await asyncio.gather(
        gateway.save(KEY, [a, b]),
        gateway.save(KEY, [a], removed={"b"}),
    )
    assert _ids(await gateway.load(KEY)) == ["a"]


@pytest.mark.asyncio
async def test_load_includes_queued_writes(gateway):
    first = gateway.save(KEY, [make_bookmark("x")])
    loaded = gateway.load(KEY)
    queued = gateway.save(KEY, [make_bookmark("y")])
    _, seen, _ = await asyncio.gather(first, loaded, queued)
    assert _ids(seen) == ["x", "y"]


@pytest.mark.asyncio
async def test_undecryptable_blob_loads_empty_with_warning(storage):
    warnings = []
    settings = Settings({"encryption_enabled": True, "encryption_secret": "k"})
    gateway = PersistenceGateway(storage, BlobCodec(settings), on_warning=warnings.append)
    storage.set(KEY, b"\x00" * 40)
    assert await gateway.load(KEY) == []
    assert len(warnings) == 1
    assert KEY in warnings[0]


@pytest.mark.asyncio
async def test_write_failure_raises():
    gateway = PersistenceGateway(FailingStorage(), BlobCodec(Settings()))
    with pytest.raises(StorageWriteError) as exc_info:
        await gateway.save(KEY, [make_bookmark("a")])
    assert isinstance(exc_info.value, OSError)
    assert "disk full" in str(exc_info.value)
    assert not gateway.has_pending(KEY)


@pytest.mark.asyncio
async def test_migrate_merges_and_deletes_source(gateway, storage):
    await gateway.save(KEY, [make_bookmark("a"), make_bookmark("b")])
    await gateway.save(GLOBAL_KEY, [make_bookmark("c")])
    assert await gateway.migrate(KEY, GLOBAL_KEY) == 2
    assert _ids(await gateway.load(GLOBAL_KEY)) == ["a", "b", "c"]
    assert storage.get(KEY) is None


@pytest.mark.asyncio
async def test_migrate_noop_cases(gateway):
    assert await gateway.migrate(KEY, KEY) == 0
    assert await gateway.migrate("bookmarks:file:///empty", GLOBAL_KEY) == 0


@pytest.mark.asyncio
async def test_save_merges_what_another_process_stored(storage):
    # Two gateways over one store stand in for two windows in separate processes.
    one = PersistenceGateway(storage, BlobCodec(Settings()))
    two = PersistenceGateway(storage, BlobCodec(Settings()))
    await one.save(KEY, [make_bookmark("a")])
    await two.save(KEY, [make_bookmark("b")])
    assert _ids(await one.load(KEY)) == ["a", "b"]

    written = await one.save(KEY, [make_bookmark("a")], removed={"b"})
    assert _ids(written) == ["a"]
    assert _ids(await two.load(KEY)) == ["a"]
