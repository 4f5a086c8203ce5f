"""Exception hierarchy for linemark."""

from __future__ import annotations


class LinemarkError(Exception):
    """Base for all linemark errors."""


class DecryptionError(LinemarkError):
    """Persisted blob is unreadable under the current key or format."""


class NotFoundError(LinemarkError, KeyError):
    """No bookmark with the given id."""

    def __init__(self, bookmark_id: str) -> None:
        super().__init__(f"bookmark not found: {bookmark_id}")
        self.bookmark_id = bookmark_id

    def __str__(self) -> str:
        return self.args[0]


class UnresolvableLocationError(LinemarkError):
    """A bookmark's file (or line) cannot be read."""

    def __init__(self, path: str, line: int | None = None) -> None:
        where = path if line is None else f"{path}:{line + 1}"
        super().__init__(f"cannot resolve {where}")
        self.path = path
        self.line = line


class StorageWriteError(LinemarkError, OSError):
    """Writing a persisted blob failed. Not retried automatically."""

    def __init__(self, key: str, reason: str = "") -> None:
        msg = f"failed to save {key}"
        if reason:
            msg = f"{msg}: {reason}"
        super().__init__(msg)
        self.key = key

    def __str__(self) -> str:
        return self.args[0]
