"""BookmarkStore: the canonical in-memory bookmark collection.

    store = BookmarkStore(reader=FileDocumentReader())
    bm = store.add(Location(Path("/ws/app.py"), 41), roots=[Path("/ws")])
    store.record_access(bm.id)
    store.snapshot()          # tuple of copies, safe to hand out

All mutations are synchronous and in-memory. Persistence is someone else's
job: subscribers to `changed` (payload-free) re-query via snapshot().

Removed ids are remembered until take_removed() hands them to a save, so
that reconcile() with an older collection cannot resurrect them.
"""

from __future__ import annotations

import copy
import logging
import threading
import time
from typing import TYPE_CHECKING

from linemark.errors import NotFoundError
from linemark.fingerprint import fingerprint
from linemark.models import Bookmark, Location, new_bookmark_id
from linemark.signals import Signal

if TYPE_CHECKING:
    from collections.abc import Iterable
    from pathlib import Path

    from linemark.documents import DocumentReader

logger = logging.getLogger("linemark.store")


def reconcile(*collections: Iterable[Bookmark]) -> list[Bookmark]:
    """Merge collections, keeping the most recently *accessed* record per id.

    Ties (including two never-accessed records) keep the first one seen.
    Ids that appear once are kept unconditionally. Order is unspecified.
    """
    winners: dict[str, Bookmark] = {}
    for collection in collections:
        for b in collection:
            existing = winners.get(b.id)
            if existing is None or b.access_rank > existing.access_rank:
                winners[b.id] = b
    return list(winners.values())


class BookmarkStore:
    """In-memory bookmark collection owned by one session."""

    def __init__(self, reader: DocumentReader | None = None) -> None:
        self.reader = reader
        self.changed = Signal("store.changed")
        self._bookmarks: list[Bookmark] = []
        self._removed: set[str] = set()
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def __len__(self) -> int:
        with self._lock:
            return len(self._bookmarks)

    def snapshot(self) -> tuple[Bookmark, ...]:
        """Copies of every bookmark, taken atomically."""
        with self._lock:
            return tuple(copy.copy(b) for b in self._bookmarks)

    def find(self, bookmark_id: str) -> Bookmark | None:
        with self._lock:
            b = self._find(bookmark_id)
            return copy.copy(b) if b is not None else None

    def get(self, bookmark_id: str) -> Bookmark:
        b = self.find(bookmark_id)
        if b is None:
            raise NotFoundError(bookmark_id)
        return b

    def _find(self, bookmark_id: str) -> Bookmark | None:
        for b in self._bookmarks:
            if b.id == bookmark_id:
                return b
        return None

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    def add(
        self,
        location: Location,
        *,
        roots: list[Path] | tuple[Path, ...] = (),
        label: str | None = None,
    ) -> Bookmark:
        """Create a bookmark at location, fingerprinting the live line if readable."""
        file_path, workspace_root = location.resolve(roots)
        digest = ""
        if self.reader is not None:
            text = self.reader.read_line(location.path, location.line)
            if text is not None:
                digest = fingerprint(text)
        with self._lock:
            bookmark = Bookmark(
                id=new_bookmark_id(),
                file_path=file_path,
                workspace_root=workspace_root,
                line=location.line,
                label=label or f"Bookmark {len(self._bookmarks) + 1}",
                content_fingerprint=digest,
            )
            self._bookmarks.append(bookmark)
        logger.debug("added %s at %s:%d", bookmark.id, file_path, location.line)
        self.changed.emit()
        return copy.copy(bookmark)

    def insert(self, bookmarks: Iterable[Bookmark]) -> int:
        """Append pre-built bookmarks (imports). Ids already present are skipped."""
        added = 0
        with self._lock:
            known = {b.id for b in self._bookmarks}
            for b in bookmarks:
                if b.id in known:
                    continue
                self._bookmarks.append(copy.copy(b))
                known.add(b.id)
                added += 1
        if added:
            self.changed.emit()
        return added

    def remove(self, bookmark_id: str) -> None:
        """Delete by id. Unknown ids are ignored."""
        with self._lock:
            before = len(self._bookmarks)
            self._bookmarks = [b for b in self._bookmarks if b.id != bookmark_id]
            if len(self._bookmarks) == before:
                return
            self._removed.add(bookmark_id)
        self.changed.emit()

    def clear_all(self) -> None:
        with self._lock:
            if not self._bookmarks:
                return
            self._removed.update(b.id for b in self._bookmarks)
            self._bookmarks = []
        self.changed.emit()

    def rename(self, bookmark_id: str, new_label: str) -> None:
        with self._lock:
            b = self._find(bookmark_id)
            if b is None or b.label == new_label:
                return
            b.label = new_label
        self.changed.emit()

    def record_access(self, bookmark_id: str) -> None:
        with self._lock:
            b = self._find(bookmark_id)
            if b is None:
                return
            b.access_count += 1
            b.last_accessed_at = time.time()
        self.changed.emit()

    def update_location(
        self,
        old_path: str,
        old_root: str | None,
        new_path: str,
        new_root: str | None,
    ) -> int:
        """Follow a host-reported file rename. Returns how many bookmarks moved."""
        moved = 0
        with self._lock:
            for b in self._bookmarks:
                if b.file_path == old_path and b.workspace_root == old_root:
                    b.file_path = new_path
                    b.workspace_root = new_root
                    moved += 1
        if moved:
            logger.info("rename %s -> %s moved %d bookmark(s)", old_path, new_path, moved)
            self.changed.emit()
        return moved

    def fix_position(self, bookmark_id: str, new_line: int, new_fingerprint: str) -> None:
        """Re-anchor a (stale) bookmark to a corrected line and clear stale."""
        if new_line < 0:
            msg = f"line must be >= 0, got {new_line}"
            raise ValueError(msg)
        with self._lock:
            b = self._find(bookmark_id)
            if b is None:
                return
            b.line = new_line
            b.content_fingerprint = new_fingerprint
            b.stale = False
        self.changed.emit()

    def mark_stale(self, bookmark_id: str, new_fingerprint: str | None = None) -> bool:
        """Flag a bookmark stale; refresh its fingerprint when one is given.

        Returns True when anything changed.
        """
        with self._lock:
            b = self._find(bookmark_id)
            if b is None:
                return False
            refresh = new_fingerprint is not None and new_fingerprint != b.content_fingerprint
            if b.stale and not refresh:
                return False
            b.stale = True
            if refresh:
                b.content_fingerprint = new_fingerprint  # type: ignore[assignment]
        self.changed.emit()
        return True

    # ------------------------------------------------------------------
    # Sync with persisted state
    # ------------------------------------------------------------------

    def replace(self, bookmarks: Iterable[Bookmark]) -> None:
        """Adopt a freshly loaded collection (scope switch, initial load)."""
        with self._lock:
            self._bookmarks = [copy.copy(b) for b in bookmarks]
            self._removed.clear()
        self.changed.emit()

    def reconcile(self, incoming: Iterable[Bookmark]) -> tuple[Bookmark, ...]:
        """Merge incoming into the collection (last access wins) and adopt it.

        Ids removed locally but not yet saved stay removed.
        """
        with self._lock:
            merged = reconcile(self._bookmarks, (copy.copy(b) for b in incoming))
            merged = [b for b in merged if b.id not in self._removed]
            # Keep local order stable; newcomers go to the end.
            position = {b.id: i for i, b in enumerate(self._bookmarks)}
            merged.sort(key=lambda b: position.get(b.id, len(position)))
            unchanged = [(b.id, b) for b in merged] == [(b.id, b) for b in self._bookmarks]
            self._bookmarks = merged
            result = tuple(copy.copy(b) for b in merged)
        if not unchanged:
            self.changed.emit()
        return result

    def take_removed(self) -> set[str]:
        """Hand over ids removed since the last save; the caller persists them."""
        with self._lock:
            removed, self._removed = self._removed, set()
            return removed

    def restore_removed(self, ids: Iterable[str]) -> None:
        """Put back ids from a save that failed."""
        with self._lock:
            self._removed.update(ids)
