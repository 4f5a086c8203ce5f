"""Keyed blob storage: the only resource shared between windows.

Backends promise an atomic single-key set plus `lock(key)`, an exclusive
lock held across a read-modify-write. Merging racing writers is the
gateway's job.
"""

from __future__ import annotations

import contextlib
import fcntl
import hashlib
import sqlite3
import threading
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from collections.abc import Iterator
    from contextlib import AbstractContextManager

    from diskcache import Cache


class BlobStorage(Protocol):
    def get(self, key: str) -> bytes | None: ...

    def set(self, key: str, blob: bytes) -> None: ...

    def delete(self, key: str) -> None: ...

    def lock(self, key: str) -> AbstractContextManager[None]:
        """Exclusive per-key lock; blocks until acquired."""
        ...


class MemoryStorage:
    """Dict-backed storage for tests and ephemeral sessions."""

    def __init__(self) -> None:
        self._blobs: dict[str, bytes] = {}
        self._lock = threading.Lock()
        self._key_locks: dict[str, threading.Lock] = {}

    def get(self, key: str) -> bytes | None:
        with self._lock:
            return self._blobs.get(key)

    def set(self, key: str, blob: bytes) -> None:
        with self._lock:
            self._blobs[key] = bytes(blob)

    def delete(self, key: str) -> None:
        with self._lock:
            self._blobs.pop(key, None)

    @contextlib.contextmanager
    def lock(self, key: str) -> Iterator[None]:
        with self._lock:
            key_lock = self._key_locks.setdefault(key, threading.Lock())
        with key_lock:
            yield

    def keys(self) -> list[str]:
        with self._lock:
            return sorted(self._blobs)


class DiskCacheStorage:
    """diskcache-backed storage; safe to share between processes.

    Storage path: {directory}/ (SQLite index + value files managed by diskcache).
    Lock files:   {directory}/locks/<sha1(key)[:16]>.lock (flock, one per key)
    sqlite3 errors are re-raised as OSError so callers see a single I/O error type.
    """

    def __init__(self, directory: Path | str) -> None:
        self.directory = Path(directory)
        self._disk_cache: Cache | None = None

    @property
    def _cache(self) -> Cache:
        """Get or create the diskcache instance (lazy)."""
        if self._disk_cache is None:
            from diskcache import Cache

            self.directory.mkdir(parents=True, exist_ok=True)
            self._disk_cache = Cache(str(self.directory))
        return self._disk_cache

    def get(self, key: str) -> bytes | None:
        try:
            value = self._cache.get(key)
        except sqlite3.Error as exc:
            raise OSError(f"blob store read failed for {key}: {exc}") from exc
        return bytes(value) if value is not None else None

    def set(self, key: str, blob: bytes) -> None:
        try:
            self._cache.set(key, bytes(blob))
        except sqlite3.Error as exc:
            raise OSError(f"blob store write failed for {key}: {exc}") from exc

    def delete(self, key: str) -> None:
        try:
            self._cache.delete(key)
        except sqlite3.Error as exc:
            raise OSError(f"blob store delete failed for {key}: {exc}") from exc

    @contextlib.contextmanager
    def lock(self, key: str) -> Iterator[None]:
        """flock(LOCK_EX) on the key's lock file, held for the whole block."""
        lock_dir = self.directory / "locks"
        lock_dir.mkdir(parents=True, exist_ok=True)
        digest = hashlib.sha1(key.encode("utf-8")).hexdigest()[:16]  # noqa: S324
        with (lock_dir / f"{digest}.lock").open("a") as f:
            fcntl.flock(f, fcntl.LOCK_EX)
            try:
                yield
            finally:
                fcntl.flock(f, fcntl.LOCK_UN)

    def keys(self) -> list[str]:
        return sorted(str(k) for k in self._cache.iterkeys())

    def close(self) -> None:
        if self._disk_cache is not None:
            self._disk_cache.close()
            self._disk_cache = None
