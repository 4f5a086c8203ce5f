"""PersistenceGateway: keyed load/save of bookmark collections.

    gateway = PersistenceGateway(DiskCacheStorage(".linemark/store"), BlobCodec(settings))
    bookmarks = await gateway.load("bookmarks")
    merged = await gateway.save("bookmarks", store.snapshot(), removed=store.take_removed())

Guarantees, per key (keys are independent):
    - at most one load/save in flight per process (asyncio.Lock, `async with`
      on every path)
    - a save that arrives while another holds the lock is folded together with
      the in-flight collection, and the next lock holder writes everything
      queued, so racing writers are merged (reconcile) instead of dropped
    - every save is a read-merge-write under the storage's per-key lock
      (flock for DiskCacheStorage), so windows in other processes sharing the
      store are merged too; only ids removed by this save are dropped
    - load merges queued-but-unwritten saves into what it reads back

Storage I/O runs in a worker thread.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from linemark.config import SCOPE_GLOBAL
from linemark.errors import DecryptionError, StorageWriteError
from linemark.store import reconcile

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from linemark.codec import BlobCodec
    from linemark.models import Bookmark
    from linemark.storage import BlobStorage

logger = logging.getLogger("linemark.gateway")

GLOBAL_KEY = "bookmarks"


def storage_key(scope: str, workspace_root: Path | str | None = None) -> str:
    """One blob for everything ("global") or one per workspace root.

    Per-workspace with no open workspace falls back to the global blob.
    """
    if scope == SCOPE_GLOBAL or workspace_root is None:
        return GLOBAL_KEY
    return f"{GLOBAL_KEY}:{Path(workspace_root).resolve().as_uri()}"


@dataclass
class _PendingWrite:
    bookmarks: list[Bookmark] = field(default_factory=list)
    removed: set[str] = field(default_factory=set)
    reencode: bool = False

    def fold(self, bookmarks: Iterable[Bookmark], removed: Iterable[str] = (), reencode: bool = False) -> None:
        self.bookmarks = reconcile(self.bookmarks, bookmarks)
        self.removed.update(removed)
        self.reencode = self.reencode or reencode

    def apply_to(self, base: Iterable[Bookmark]) -> list[Bookmark]:
        merged = reconcile(base, self.bookmarks)
        return [b for b in merged if b.id not in self.removed]


class PersistenceGateway:
    """Serializes load/save per key over a blob storage backend."""

    def __init__(
        self,
        storage: BlobStorage,
        codec: BlobCodec,
        on_warning: Callable[[str], None] | None = None,
    ) -> None:
        self.storage = storage
        self.codec = codec
        self.on_warning = on_warning
        self._locks: dict[str, asyncio.Lock] = {}
        self._pending: dict[str, _PendingWrite] = {}
        self._inflight: dict[str, _PendingWrite] = {}

    def _lock_for(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    def _warn(self, message: str) -> None:
        logger.warning(message)
        if self.on_warning is not None:
            self.on_warning(message)

    def has_pending(self, key: str) -> bool:
        return key in self._pending or key in self._inflight

    # ------------------------------------------------------------------
    # Blob access (worker thread; caller holds the key's asyncio lock)
    # ------------------------------------------------------------------

    def _decode(self, key: str, blob: bytes | None) -> list[Bookmark]:
        if blob is None:
            return []
        try:
            return self.codec.decode(blob)
        except DecryptionError as exc:
            self._warn(f"could not read stored bookmarks ({key}): {exc}; starting from an empty collection")
            return []

    def _write(self, key: str, bookmarks: list[Bookmark]) -> None:
        try:
            self.storage.set(key, self.codec.encode(bookmarks))
        except OSError as exc:
            raise StorageWriteError(key, str(exc)) from exc

    def _merge_write(self, key: str, batch: _PendingWrite) -> list[Bookmark]:
        try:
            with self.storage.lock(key):
                stored = [] if batch.reencode else self._decode(key, self.storage.get(key))
                merged = batch.apply_to(stored)
                self.storage.set(key, self.codec.encode(merged))
        except OSError as exc:
            raise StorageWriteError(key, str(exc)) from exc
        return merged

    def _move(self, from_key: str, to_key: str) -> int:
        with contextlib.ExitStack() as stack:
            # Fixed acquisition order so two migrations cannot deadlock.
            for key in sorted((from_key, to_key)):
                stack.enter_context(self.storage.lock(key))
            source = self._decode(from_key, self.storage.get(from_key))
            if not source:
                return 0
            target = self._decode(to_key, self.storage.get(to_key))
            self._write(to_key, reconcile(target, source))
            self.storage.delete(from_key)
        return len(source)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def load(self, key: str) -> list[Bookmark]:
        """Read the collection for key, including queued writes not yet on disk."""
        self.codec.prepare()
        async with self._lock_for(key):
            blob = await asyncio.to_thread(self.storage.get, key)
            bookmarks = self._decode(key, blob)
            pending = self._pending.get(key)
            if pending is not None:
                bookmarks = pending.apply_to(bookmarks)
            logger.debug("loaded %d bookmark(s) from %s", len(bookmarks), key)
            return bookmarks

    async def save(
        self,
        key: str,
        bookmarks: Iterable[Bookmark],
        removed: Iterable[str] = (),
        reencode: bool = False,
    ) -> list[Bookmark] | None:
        """Merge bookmarks into what is stored under key, along with every queued write.

        reencode=True skips reading the stored blob: it is in a format the
        codec no longer reads, and bookmarks carries the whole collection.

        Returns the collection as written, or None when an earlier lock holder
        already wrote this request as part of its batch.
        Raises StorageWriteError when the backend fails; nothing is retried.
        """
        pending = self._pending.setdefault(key, _PendingWrite())
        pending.fold(bookmarks, removed, reencode)
        inflight = self._inflight.get(key)
        if inflight is not None:
            # Raced in behind an in-flight write: carry its data forward.
            pending.fold(inflight.bookmarks, inflight.removed)

        async with self._lock_for(key):
            batch = self._pending.pop(key, None)
            if batch is None:
                return None
            self._inflight[key] = batch
            try:
                self.codec.prepare()
                merged = await asyncio.to_thread(self._merge_write, key, batch)
            finally:
                self._inflight.pop(key, None)
            logger.debug("saved %d bookmark(s) to %s", len(merged), key)
            return merged

    async def migrate(self, from_key: str, to_key: str) -> int:
        """Move everything stored under from_key into to_key; from_key is deleted.

        Existing data under to_key is kept and merged. Returns the number of
        bookmarks moved.
        """
        if from_key == to_key:
            return 0
        self.codec.prepare()
        async with contextlib.AsyncExitStack() as stack:
            for key in sorted((from_key, to_key)):
                await stack.enter_async_context(self._lock_for(key))
            moved = await asyncio.to_thread(self._move, from_key, to_key)
        if moved:
            logger.info("migrated %d bookmark(s) %s -> %s", moved, from_key, to_key)
        return moved
