"""Document access: the live text of files that bookmarks point into."""

from __future__ import annotations

from pathlib import Path
from typing import Protocol

_MAX_FILE_BYTES = 16 * 1024 * 1024


class DocumentReader(Protocol):
    def read_lines(self, path: Path) -> list[str] | None:
        """All lines of path, or None when the file cannot be opened."""
        ...

    def read_line(self, path: Path, line: int) -> str | None:
        """Text of one zero-based line, or None when unavailable."""
        ...


class FileDocumentReader:
    """Reads files from disk; open editor buffers can be overlaid in memory.

    Overlays take precedence over the file on disk, the way an editor's
    unsaved buffer does.
    """

    def __init__(self) -> None:
        self._overlays: dict[Path, list[str]] = {}

    def open_buffer(self, path: Path | str, text: str) -> None:
        self._overlays[Path(path)] = text.splitlines()

    def close_buffer(self, path: Path | str) -> None:
        self._overlays.pop(Path(path), None)

    def read_lines(self, path: Path) -> list[str] | None:
        path = Path(path)
        if path in self._overlays:
            return list(self._overlays[path])
        try:
            if path.stat().st_size > _MAX_FILE_BYTES:
                return None
            return path.read_text(encoding="utf-8", errors="replace").splitlines()
        except OSError:
            return None

    def read_line(self, path: Path, line: int) -> str | None:
        lines = self.read_lines(path)
        if lines is None or not 0 <= line < len(lines):
            return None
        return lines[line]
