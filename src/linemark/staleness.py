"""Staleness detection: has the bookmarked line drifted from its fingerprint?

Semantics: the first mismatch flags the bookmark stale *and* snapshots the
live fingerprint. A later observation of the same text therefore matches and
changes nothing; `stale` is only cleared by fix_position(). Editing the line
back to its original text does not clear it either.

A file that cannot be opened (or a line past EOF) marks its bookmarks stale
without touching the fingerprint: the content is unknown, not known-different.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from linemark.errors import UnresolvableLocationError
from linemark.fingerprint import fingerprint

if TYPE_CHECKING:
    from linemark.documents import DocumentReader
    from linemark.models import Bookmark
    from linemark.store import BookmarkStore

logger = logging.getLogger("linemark.staleness")


def check(bookmark: Bookmark, live_fingerprint: str) -> bool:
    """True when the live fingerprint differs from the recorded one."""
    return live_fingerprint != bookmark.content_fingerprint


def live_fingerprint(bookmark: Bookmark, lines: list[str] | None) -> str:
    """Fingerprint of the bookmarked line. Raises UnresolvableLocationError."""
    if lines is None:
        raise UnresolvableLocationError(str(bookmark.abs_path))
    if bookmark.line >= len(lines):
        raise UnresolvableLocationError(str(bookmark.abs_path), bookmark.line)
    return fingerprint(lines[bookmark.line])


@dataclass
class CheckReport:
    checked: int = 0
    drifted: list[str] = field(default_factory=list)
    unreachable: list[str] = field(default_factory=list)

    @property
    def stale_count(self) -> int:
        return len(self.drifted) + len(self.unreachable)


class StalenessDetector:
    """Applies observations of live file content to bookmarks in a store."""

    def __init__(self, store: BookmarkStore, reader: DocumentReader) -> None:
        self.store = store
        self.reader = reader

    def observe(self, bookmark: Bookmark, lines: list[str] | None, report: CheckReport | None = None) -> bool:
        """Check one bookmark against already-read lines. Returns True if it changed."""
        if report is not None:
            report.checked += 1
        try:
            live = live_fingerprint(bookmark, lines)
        except UnresolvableLocationError as exc:
            logger.debug("%s: %s", bookmark.id, exc)
            if report is not None:
                report.unreachable.append(bookmark.id)
            return self.store.mark_stale(bookmark.id)
        if not check(bookmark, live):
            return False
        if report is not None:
            report.drifted.append(bookmark.id)
        return self.store.mark_stale(bookmark.id, live)

    def file_changed(self, path: Path | str) -> CheckReport:
        """Reactive check: only bookmarks owned by path are re-examined."""
        target = Path(path)
        owned = [b for b in self.store.snapshot() if b.abs_path == target]
        report = CheckReport()
        if not owned:
            return report
        lines = self.reader.read_lines(target)
        for b in owned:
            self.observe(b, lines, report)
        if report.drifted or report.unreachable:
            logger.info("%s: %d bookmark(s) drifted", target, len(report.drifted) + len(report.unreachable))
        return report

    def check_all(self) -> CheckReport:
        """Batch check: each referenced file is read once."""
        by_file: dict[Path, list[Bookmark]] = defaultdict(list)
        for b in self.store.snapshot():
            by_file[b.abs_path].append(b)
        report = CheckReport()
        for path, bookmarks in by_file.items():
            lines = self.reader.read_lines(path)
            for b in bookmarks:
                self.observe(b, lines, report)
        logger.info(
            "checked %d bookmark(s) in %d file(s): %d drifted, %d unreachable",
            report.checked, len(by_file), len(report.drifted), len(report.unreachable),
        )
        return report
