"""Export/import of bookmarks as Markdown, JSON, CSV or plain text.

Lines are 1-based in every exported format. Imports get fresh ids and are
de-duplicated on (file_path, line): an entry matching an existing bookmark,
or an earlier entry of the same import, is dropped rather than merged.
"""

from __future__ import annotations

import csv
import io
import json
import logging
import re
from pathlib import PurePath
from typing import TYPE_CHECKING, Any

from linemark.models import Bookmark, new_bookmark_id

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

logger = logging.getLogger("linemark.interchange")

FORMATS = ("markdown", "json", "csv", "txt")
_EXTENSIONS = {".md": "markdown", ".markdown": "markdown", ".json": "json", ".csv": "csv", ".txt": "txt"}

_MD_HEADER = "| Label | File | Line | Path |\n|-------|------|------|------|"
_MD_CELL = r"((?:\\\||[^|])*?)"
_MD_ROW_RE = re.compile(
    rf"^\|\s*{_MD_CELL}\s*\|\s*{_MD_CELL}\s*\|\s*(?:Line\s+)?(\d+)\s*\|\s*`?(.+?)`?\s*\|\s*$")
_CSV_HEADER = ["Label", "File", "Line", "Path", "ID"]
_TXT_SEPARATOR = "-" * 50
_TXT_BLOCK_RE = re.compile(r"^(.*?)\s*\[Line\s+(\d+)\]\s*\n(.+?)\s*$", re.DOTALL)


def format_for(filename: str) -> str:
    """Guess the interchange format from a file name. Raises ValueError."""
    suffix = PurePath(filename).suffix.lower()
    if suffix not in _EXTENSIONS:
        msg = f"unsupported file type {suffix or filename!r}; use one of {', '.join(sorted(_EXTENSIONS))}"
        raise ValueError(msg)
    return _EXTENSIONS[suffix]


def _md_cell(text: str) -> str:
    return text.replace("|", "\\|")


# ---------------------------------------------------------------------------
# Export
# ---------------------------------------------------------------------------

def export_markdown(bookmarks: Iterable[Bookmark]) -> str:
    rows = [
        f"| {_md_cell(b.label)} | {_md_cell(b.base_name)} | {b.line + 1} | `{_md_cell(b.file_path)}` |"
        for b in bookmarks
    ]
    return "\n".join([_MD_HEADER, *rows]) + "\n"


def export_json(bookmarks: Iterable[Bookmark]) -> str:
    data = [{"label": b.label, "path": b.file_path, "line": b.line + 1, "id": b.id} for b in bookmarks]
    return json.dumps(data, indent=2) + "\n"


def export_csv(bookmarks: Iterable[Bookmark]) -> str:
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(_CSV_HEADER)
    for b in bookmarks:
        writer.writerow([b.label, b.base_name, b.line + 1, b.file_path, b.id])
    return buf.getvalue()


def export_txt(bookmarks: Iterable[Bookmark]) -> str:
    blocks = [f"{b.label} [Line {b.line + 1}]\n{b.file_path}" for b in bookmarks]
    return f"\n{_TXT_SEPARATOR}\n".join(blocks) + "\n" if blocks else ""


_EXPORTERS: dict[str, Callable[[Iterable[Bookmark]], str]] = {
    "markdown": export_markdown,
    "json": export_json,
    "csv": export_csv,
    "txt": export_txt,
}


def export_bookmarks(bookmarks: Iterable[Bookmark], fmt: str) -> str:
    if fmt not in _EXPORTERS:
        msg = f"unknown export format {fmt!r}; use one of {', '.join(FORMATS)}"
        raise ValueError(msg)
    return _EXPORTERS[fmt](bookmarks)


# ---------------------------------------------------------------------------
# Import (parsers yield (label, path, 1-based line))
# ---------------------------------------------------------------------------

def _parse_markdown(text: str) -> list[tuple[str, str, int]]:
    rows: list[tuple[str, str, int]] = []
    for line in text.splitlines():
        m = _MD_ROW_RE.match(line.strip())
        if m is None:
            continue
        label = m.group(1).replace("\\|", "|")
        rows.append((label, m.group(4).replace("\\|", "|"), int(m.group(3))))
    return rows


def _parse_json(text: str) -> list[tuple[str, str, int]]:
    data: Any = json.loads(text)
    if not isinstance(data, list):
        msg = "expected a JSON list of bookmarks"
        raise ValueError(msg)
    rows: list[tuple[str, str, int]] = []
    for item in data:
        if not isinstance(item, dict) or not item.get("path"):
            continue
        rows.append((str(item.get("label", "")), str(item["path"]), int(item.get("line") or 1)))
    return rows


def _parse_csv(text: str) -> list[tuple[str, str, int]]:
    rows: list[tuple[str, str, int]] = []
    reader = csv.reader(io.StringIO(text))
    header = next(reader, None)
    if header is None:
        return rows
    for record in reader:
        if len(record) < 4 or not record[3]:
            continue
        try:
            line = int(record[2])
        except ValueError:
            logger.warning("skipping CSV row with bad line number: %r", record)
            continue
        rows.append((record[0], record[3], line))
    return rows


def _parse_txt(text: str) -> list[tuple[str, str, int]]:
    rows: list[tuple[str, str, int]] = []
    for block in re.split(rf"^\s*{_TXT_SEPARATOR}\s*$", text, flags=re.MULTILINE):
        m = _TXT_BLOCK_RE.match(block.strip())
        if m is None:
            continue
        rows.append((m.group(1).strip(), m.group(3).strip(), int(m.group(2))))
    return rows


_PARSERS: dict[str, Callable[[str], list[tuple[str, str, int]]]] = {
    "markdown": _parse_markdown,
    "json": _parse_json,
    "csv": _parse_csv,
    "txt": _parse_txt,
}


def parse_bookmarks(
    text: str,
    fmt: str,
    workspace_root: str | None = None,
) -> list[Bookmark]:
    """Parse exported text into new bookmarks (fresh ids, not yet de-duplicated).

    Relative paths are attached to workspace_root; absolute ones stay global.
    """
    if fmt not in _PARSERS:
        msg = f"unknown import format {fmt!r}; use one of {', '.join(FORMATS)}"
        raise ValueError(msg)
    bookmarks: list[Bookmark] = []
    for label, path, line in _PARSERS[fmt](text):
        root = None if PurePath(path).is_absolute() else workspace_root
        bookmarks.append(Bookmark(
            id=new_bookmark_id(),
            file_path=path,
            workspace_root=root,
            line=max(0, line - 1),
            label=label,
        ))
    return bookmarks


def dedupe_against(existing: Iterable[Bookmark], incoming: Iterable[Bookmark]) -> list[Bookmark]:
    """Drop incoming entries whose (file_path, line) is already taken."""
    seen = {b.location_key for b in existing}
    unique: list[Bookmark] = []
    for b in incoming:
        if b.location_key in seen:
            continue
        seen.add(b.location_key)
        unique.append(b)
    return unique
