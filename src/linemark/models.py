"""Data models for the bookmark store."""

from __future__ import annotations

import os
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any


def new_bookmark_id() -> str:
    """Generate an opaque, globally unique bookmark ID."""
    return str(uuid.uuid4())


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


@dataclass
class Bookmark:
    """A marked line in a file, anchored by a content fingerprint."""

    id: str
    file_path: str                     # relative to workspace_root, absolute otherwise
    line: int                          # zero-based
    label: str = ""
    workspace_root: str | None = None  # None = global / unscoped
    content_fingerprint: str = ""
    access_count: int = 0
    last_accessed_at: float | None = None
    stale: bool = False
    created_at: str = field(default_factory=_now_iso)

    def __post_init__(self) -> None:
        if self.line < 0:
            msg = f"line must be >= 0, got {self.line}"
            raise ValueError(msg)

    @property
    def abs_path(self) -> Path:
        if self.workspace_root:
            return Path(self.workspace_root) / self.file_path
        return Path(self.file_path)

    @property
    def base_name(self) -> str:
        return os.path.basename(self.file_path)

    @property
    def location_key(self) -> tuple[str, int]:
        """Total order for location views: file path, then line."""
        return (self.file_path, self.line)

    @property
    def access_rank(self) -> float:
        """Merge tie-breaker; a never-accessed bookmark ranks as 0."""
        return self.last_accessed_at or 0.0

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> Bookmark:
        last = d.get("last_accessed_at")
        return cls(
            id=d["id"],
            file_path=d["file_path"],
            line=int(d.get("line", 0)),
            label=d.get("label", ""),
            workspace_root=d.get("workspace_root"),
            content_fingerprint=d.get("content_fingerprint", ""),
            access_count=int(d.get("access_count", 0)),
            last_accessed_at=float(last) if last is not None else None,
            stale=bool(d.get("stale", False)),
            created_at=d.get("created_at", ""),
        )

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "id": self.id,
            "file_path": self.file_path,
            "line": self.line,
            "label": self.label,
            "content_fingerprint": self.content_fingerprint,
            "access_count": self.access_count,
        }
        if self.workspace_root:
            d["workspace_root"] = self.workspace_root
        if self.last_accessed_at is not None:
            d["last_accessed_at"] = self.last_accessed_at
        if self.stale:
            d["stale"] = True
        if self.created_at:
            d["created_at"] = self.created_at
        return d


@dataclass(frozen=True)
class Location:
    """An absolute file path and a zero-based line, as reported by the host."""

    path: Path
    line: int

    def resolve(self, roots: list[Path] | tuple[Path, ...] = ()) -> tuple[str, str | None]:
        """Return (file_path, workspace_root) for storage.

        The innermost root containing the path owns it (ties go to the first
        listed); the path is then stored relative to that root. Paths outside
        every root stay absolute.
        """
        path = Path(self.path)
        owners = [root for root in roots if path.is_relative_to(root)]
        if not owners:
            return (str(path), None)
        root = max(owners, key=lambda r: len(Path(r).parts))
        return (path.relative_to(root).as_posix(), str(root))
