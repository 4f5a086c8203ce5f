"""BookmarkSession: one store, wired to persistence, staleness and settings.

    async with BookmarkSession.from_config(load_config()) as session:
        bm = session.add("/ws/src/app.py", 41, label="entry point")
        session.navigate("/ws/src/app.py", 10, "next")
    # leaving the block flushes the debounced saver

The session is the composition root: nothing else creates a BookmarkStore,
and every store change schedules a debounced save to the current storage key.
Setting changes are applied live:

    storage_scope        flush to the old key, then load the new one
    encryption_*         re-save the in-memory collection in the new format
    node_scale           invalidate the relatedness graph
    save_delay           new debounce delay for the next trigger
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any

from linemark.codec import BlobCodec, generate_secret
from linemark.config import STORAGE_SCOPES
from linemark.documents import FileDocumentReader
from linemark.errors import LinemarkError, NotFoundError, UnresolvableLocationError
from linemark.fingerprint import fingerprint
from linemark.gateway import PersistenceGateway, storage_key
from linemark.interchange import dedupe_against, export_bookmarks, parse_bookmarks
from linemark.models import Location
from linemark.query import (
    GraphCache,
    build_tree,
    filter_bookmarks,
    group_by_workspace,
    navigation_order,
    sort_by_location,
)
from linemark.scheduler import DebouncedTask
from linemark.staleness import CheckReport, StalenessDetector
from linemark.storage import DiskCacheStorage
from linemark.store import BookmarkStore

if TYPE_CHECKING:
    from collections.abc import Callable, Coroutine, Iterable, Iterator

    from linemark.config import LinemarkConfig, Settings
    from linemark.models import Bookmark
    from linemark.query import Direction, Graph, Group, GroupNode
    from linemark.storage import BlobStorage

logger = logging.getLogger("linemark.session")


class BookmarkSession:
    """A window's view of the bookmark collection."""

    def __init__(
        self,
        settings: Settings,
        storage: BlobStorage,
        *,
        roots: Iterable[Path | str] = (),
        reader: FileDocumentReader | None = None,
        on_warning: Callable[[str], None] | None = None,
    ) -> None:
        self.settings = settings
        self.storage = storage
        self.roots = [Path(r).resolve() for r in roots]
        self.reader = reader if reader is not None else FileDocumentReader()
        self.on_warning = on_warning
        self.warnings: list[str] = []

        self.store = BookmarkStore(self.reader)
        self.codec = BlobCodec(settings)
        self.gateway = PersistenceGateway(storage, self.codec, on_warning=self._report)
        self.saver = DebouncedTask(self._persist, delay=settings.get("save_delay"), on_error=self._save_failed)
        self.detector = StalenessDetector(self.store, self.reader)
        self.graph_cache = GraphCache(self.store, settings.get("node_scale"))

        self._key = self._current_key()
        self._loaded = False
        self._muted = False
        self._reencode = False
        self._owned_storage: DiskCacheStorage | None = None
        self._tasks: set[asyncio.Task[Any]] = set()
        self._disconnects = [
            self.store.changed.connect(self._on_store_changed),
            settings.changed.connect(self._on_setting_changed),
        ]

    @classmethod
    def from_config(
        cls,
        cfg: LinemarkConfig,
        on_warning: Callable[[str], None] | None = None,
    ) -> BookmarkSession:
        """Session over the project's diskcache store and settings overlay."""
        cfg.ensure_dirs()
        storage = DiskCacheStorage(cfg.store_dir)
        session = cls(cfg.settings(), storage, roots=cfg.workspaces, on_warning=on_warning)
        session._owned_storage = storage
        return session

    async def __aenter__(self) -> BookmarkSession:
        await self.open()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    @property
    def key(self) -> str:
        """Storage key the collection is currently loaded from and saved to."""
        return self._key

    @property
    def primary_root(self) -> Path | None:
        return self.roots[0] if self.roots else None

    def _current_key(self) -> str:
        return storage_key(self.settings.get("storage_scope"), self.primary_root)

    def _report(self, message: str) -> None:
        self.warnings.append(message)
        if self.on_warning is not None:
            self.on_warning(message)

    @contextlib.contextmanager
    def _mute(self) -> Iterator[None]:
        """Store changes inside the block do not schedule a save."""
        self._muted = True
        try:
            yield
        finally:
            self._muted = False

    # ------------------------------------------------------------------
    # Lifecycle and persistence
    # ------------------------------------------------------------------

    async def open(self) -> int:
        """Load the collection for the current key. Returns its size."""
        self._key = self._current_key()
        bookmarks = await self.gateway.load(self._key)
        with self._mute():
            self.store.replace(bookmarks)
        self._loaded = True
        logger.debug("session opened on %s with %d bookmark(s)", self._key, len(bookmarks))
        return len(bookmarks)

    async def flush(self) -> None:
        """Apply pending setting changes and write any unsaved edits now."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))
        await self.saver.flush()

    async def close(self) -> None:
        try:
            await self.flush()
        finally:
            self.saver.cancel()
            for disconnect in self._disconnects:
                disconnect()
            self._disconnects = []
            self.graph_cache.close()
            if self._owned_storage is not None:
                self._owned_storage.close()

    async def _persist(self) -> None:
        key = self._key
        if not self._loaded:
            # Edits made before open(): fold them into what is stored, never clobber it.
            stored = await self.gateway.load(key)
            with self._mute():
                self.store.reconcile(stored)
            self._loaded = True
        removed = self.store.take_removed()
        reencode, self._reencode = self._reencode, False
        try:
            merged = await self.gateway.save(key, self.store.snapshot(), removed, reencode=reencode)
        except BaseException:
            self.store.restore_removed(removed)
            self._reencode = self._reencode or reencode
            raise
        if merged is not None and key == self._key:
            with self._mute():
                self.store.reconcile(merged)

    def _save_failed(self, exc: BaseException) -> None:
        logger.error("background save to %s failed: %s", self._key, exc)
        self._report(f"bookmarks not saved: {exc}")

    def _on_store_changed(self) -> None:
        if not self._muted:
            self.saver.trigger()

    def _schedule(self, coro: Coroutine[Any, Any, Any]) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            logger.debug("no running loop; change applies on next open()")
            return
        task = loop.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _on_setting_changed(self, option: str, old: Any, new: Any) -> None:
        if option == "storage_scope":
            self._schedule(self._switch_key())
        elif option == "encryption_enabled":
            self._reencode = True
            self.saver.trigger()
        elif option == "encryption_secret":
            # A first-use secret needs no re-save; a replaced one does.
            if old and self.codec.enabled:
                self._reencode = True
                self.saver.trigger()
        elif option == "node_scale":
            self.graph_cache.set_node_scale(new)
        elif option == "save_delay":
            self.saver.delay = new

    async def _switch_key(self) -> None:
        new_key = self._current_key()
        if new_key == self._key:
            return
        await self.saver.flush()
        logger.info("storage key %s -> %s", self._key, new_key)
        await self.open()

    async def migrate(self, to_scope: str) -> int:
        """Move the stored collection to to_scope's key and switch to it.

        Returns the number of bookmarks moved.
        """
        if to_scope not in STORAGE_SCOPES:
            msg = f"unknown storage scope {to_scope!r}; use one of {', '.join(STORAGE_SCOPES)}"
            raise LinemarkError(msg)
        await self.flush()
        from_key = self._key
        to_key = storage_key(to_scope, self.primary_root)
        moved = await self.gateway.migrate(from_key, to_key)
        self.settings.set("storage_scope", to_scope)
        await self.flush()
        return moved

    async def rotate_secret(self) -> None:
        """Replace the encryption secret and re-encrypt the collection under it."""
        await self.flush()
        self.settings.set("encryption_secret", generate_secret())
        if self.codec.enabled:
            self.saver.trigger()
        await self.flush()

    # ------------------------------------------------------------------
    # Store operations
    # ------------------------------------------------------------------

    def _location(self, path: Path | str, line: int) -> Location:
        return Location(Path(path).resolve(), line)

    def add(self, path: Path | str, line: int, label: str | None = None) -> Bookmark:
        return self.store.add(self._location(path, line), roots=self.roots, label=label)

    def get(self, bookmark_id: str) -> Bookmark:
        return self.store.get(bookmark_id)

    def resolve_id(self, prefix: str) -> str:
        """Expand a unique id prefix. Raises NotFoundError or LinemarkError."""
        candidates = [b.id for b in self.store.snapshot() if b.id.startswith(prefix)]
        if not candidates:
            raise NotFoundError(prefix)
        if len(candidates) > 1:
            msg = f"id prefix {prefix!r} is ambiguous ({len(candidates)} matches)"
            raise LinemarkError(msg)
        return candidates[0]

    def remove(self, bookmark_id: str) -> None:
        self.store.remove(bookmark_id)

    def clear_all(self) -> None:
        self.store.clear_all()

    def rename(self, bookmark_id: str, new_label: str) -> None:
        self.store.rename(bookmark_id, new_label)

    def record_access(self, bookmark_id: str) -> None:
        self.store.record_access(bookmark_id)

    def fix_position(self, bookmark_id: str, new_line: int) -> Bookmark:
        """Re-anchor a bookmark on new_line of its file, taking that line's fingerprint."""
        bookmark = self.store.get(bookmark_id)
        text = self.reader.read_line(bookmark.abs_path, new_line)
        if text is None:
            raise UnresolvableLocationError(str(bookmark.abs_path), new_line)
        self.store.fix_position(bookmark_id, new_line, fingerprint(text))
        return self.store.get(bookmark_id)

    def file_renamed(self, old_path: Path | str, new_path: Path | str) -> int:
        old_file, old_root = self._location(old_path, 0).resolve(self.roots)
        new_file, new_root = self._location(new_path, 0).resolve(self.roots)
        return self.store.update_location(old_file, old_root, new_file, new_root)

    def file_changed(self, path: Path | str) -> CheckReport:
        if not self.settings.get("auto_detect_changes"):
            return CheckReport()
        return self.detector.file_changed(Path(path).resolve())

    def check_all(self) -> CheckReport:
        return self.detector.check_all()

    def navigate(
        self,
        path: Path | str | None = None,
        line: int = 0,
        direction: Direction = "next",
    ) -> Bookmark | None:
        """Move to the next/previous bookmark from (path, line) and count the visit.

        Bookmarks whose file or line cannot be read are marked stale and skipped.
        """
        cursor = None
        if path is not None:
            cursor = (self._location(path, line).resolve(self.roots)[0], line)
        for b in navigation_order(self.store.snapshot(), cursor, direction):
            if self.reader.read_line(b.abs_path, b.line) is None:
                logger.info("skipping unreachable bookmark %s (%s:%d)", b.id, b.abs_path, b.line + 1)
                self.store.mark_stale(b.id)
                continue
            self.store.record_access(b.id)
            return self.store.get(b.id)
        return None

    # ------------------------------------------------------------------
    # Projections
    # ------------------------------------------------------------------

    def bookmarks(self, text: str = "") -> list[Bookmark]:
        return sort_by_location(filter_bookmarks(self.store.snapshot(), text))

    def groups(self, text: str = "") -> list[Group]:
        return group_by_workspace(
            filter_bookmarks(self.store.snapshot(), text),
            self.roots,
            self.settings.get("group_sort_order"),
        )

    def tree(self, text: str = "") -> list[GroupNode]:
        return build_tree(self.groups(text))

    def graph(self) -> Graph:
        return self.graph_cache.get()

    # ------------------------------------------------------------------
    # Interchange
    # ------------------------------------------------------------------

    def export(self, fmt: str, text: str = "") -> str:
        return export_bookmarks(self.bookmarks(text), fmt)

    def import_text(self, text: str, fmt: str) -> int:
        """Add parsed bookmarks that don't collide with existing locations."""
        root = str(self.primary_root) if self.primary_root else None
        incoming = dedupe_against(self.store.snapshot(), parse_bookmarks(text, fmt, root))
        for b in incoming:
            line_text = self.reader.read_line(b.abs_path, b.line)
            if line_text is not None:
                b.content_fingerprint = fingerprint(line_text)
        added = self.store.insert(incoming)
        logger.info("imported %d bookmark(s) as %s", added, fmt)
        return added
