"""Read-only projections over a store snapshot.

Nothing here mutates or persists. Inputs are snapshots (tuples of copies),
so every function is safe to call while the store keeps changing.

    filter_bookmarks(snap, "parser")           # label or file base name
    group_by_workspace(snap, roots, "count-desc")
    next_bookmark(snap, ("src/app.py", 41))
    relatedness_graph(snap, node_scale=1.5)
"""

from __future__ import annotations

import math
import os
from collections import defaultdict
from dataclasses import dataclass, field
from itertools import combinations
from pathlib import Path
from typing import TYPE_CHECKING, Any, Literal

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from linemark.models import Bookmark
    from linemark.store import BookmarkStore

UNGROUPED_ID = "ungrouped"
UNGROUPED_NAME = "Other bookmarks"

Cursor = tuple[str, int]          # (file_path as stored, zero-based line)
Direction = Literal["next", "previous"]


# ---------------------------------------------------------------------------
# Filtering and ordering
# ---------------------------------------------------------------------------

def matches(bookmark: Bookmark, text: str) -> bool:
    needle = text.lower()
    return needle in bookmark.label.lower() or needle in bookmark.base_name.lower()


def filter_bookmarks(bookmarks: Iterable[Bookmark], text: str = "") -> list[Bookmark]:
    """Case-insensitive substring match on label or file base name.

    An empty filter means "no filter": everything is returned.
    """
    if not text:
        return list(bookmarks)
    return [b for b in bookmarks if matches(b, text)]


def sort_by_location(bookmarks: Iterable[Bookmark]) -> list[Bookmark]:
    """File path (lexicographic), then line (ascending)."""
    return sorted(bookmarks, key=lambda b: b.location_key)


# ---------------------------------------------------------------------------
# Grouping
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Group:
    id: str
    name: str
    root: str | None
    bookmarks: tuple[Bookmark, ...]

    @property
    def count(self) -> int:
        return len(self.bookmarks)

    @property
    def ungrouped(self) -> bool:
        return self.id == UNGROUPED_ID


def _group_sort_key(by: str) -> Any:
    if by == "count":
        return lambda g: g.count
    if by == "path":
        return lambda g: (g.root or "").lower()
    return lambda g: g.name.lower()


def sort_groups(groups: Iterable[Group], order: str = "name-asc") -> list[Group]:
    """Order groups by name, count or path, asc or desc. Ungrouped stays last."""
    by, _, direction = order.partition("-")
    groups = list(groups)
    regular = [g for g in groups if not g.ungrouped]
    rest = [g for g in groups if g.ungrouped]
    regular.sort(key=_group_sort_key(by), reverse=direction == "desc")
    return regular + rest


def group_by_workspace(
    bookmarks: Iterable[Bookmark],
    roots: Sequence[Path | str],
    order: str = "name-asc",
) -> list[Group]:
    """Partition by owning workspace root; bookmarks outside every root go to one bucket.

    Empty groups are omitted.
    """
    known = [str(r) for r in roots]
    members: dict[str, list[Bookmark]] = defaultdict(list)
    for b in bookmarks:
        key = b.workspace_root if b.workspace_root in known else UNGROUPED_ID
        members[key].append(b)

    groups = [
        Group(
            id=Path(root).as_uri() if Path(root).is_absolute() else root,
            name=os.path.basename(root.rstrip("/\\")) or root,
            root=root,
            bookmarks=tuple(sort_by_location(members[root])),
        )
        for root in dict.fromkeys(known)
        if members.get(root)
    ]
    if members.get(UNGROUPED_ID):
        groups.append(Group(
            id=UNGROUPED_ID,
            name=UNGROUPED_NAME,
            root=None,
            bookmarks=tuple(sort_by_location(members[UNGROUPED_ID])),
        ))
    return sort_groups(groups, order)


@dataclass(frozen=True)
class BookmarkNode:
    bookmark: Bookmark
    kind: Literal["bookmark"] = "bookmark"


@dataclass(frozen=True)
class GroupNode:
    group: Group
    children: tuple[BookmarkNode, ...]
    kind: Literal["group"] = "group"


TreeNode = GroupNode | BookmarkNode


def build_tree(groups: Iterable[Group]) -> list[GroupNode]:
    """Two-level tree for a presentation layer: groups, then their bookmarks."""
    return [
        GroupNode(group=g, children=tuple(BookmarkNode(b) for b in g.bookmarks))
        for g in groups
    ]


def node_label(node: TreeNode) -> str:
    if node.kind == "group":
        g = node.group  # type: ignore[union-attr]
        suffix = f" -> {g.root}" if g.root else ""
        return f"{g.name} ({g.count}){suffix}"
    b = node.bookmark  # type: ignore[union-attr]
    return f"{b.label} ({b.base_name}:{b.line + 1})"


# ---------------------------------------------------------------------------
# Navigation
# ---------------------------------------------------------------------------

def next_bookmark(bookmarks: Iterable[Bookmark], cursor: Cursor | None) -> Bookmark | None:
    """First bookmark strictly after cursor in file+line order, wrapping to the first."""
    ordered = sort_by_location(bookmarks)
    if not ordered:
        return None
    if cursor is not None:
        for b in ordered:
            if b.location_key > cursor:
                return b
    return ordered[0]


def previous_bookmark(bookmarks: Iterable[Bookmark], cursor: Cursor | None) -> Bookmark | None:
    """Last bookmark strictly before cursor in file+line order, wrapping to the last."""
    ordered = sort_by_location(bookmarks)
    if not ordered:
        return None
    if cursor is not None:
        for b in reversed(ordered):
            if b.location_key < cursor:
                return b
    return ordered[-1]


def navigation_order(
    bookmarks: Iterable[Bookmark],
    cursor: Cursor | None,
    direction: Direction = "next",
) -> list[Bookmark]:
    """Every bookmark once, in visiting order starting at the navigation target.

    Lets a caller skip unreachable entries and land on the next candidate.
    """
    ordered = sort_by_location(bookmarks)
    if not ordered:
        return []
    if direction == "previous":
        ordered.reverse()
        target = previous_bookmark(ordered, cursor)
    else:
        target = next_bookmark(ordered, cursor)
    start = next(i for i, b in enumerate(ordered) if b is target)
    return ordered[start:] + ordered[:start]


# ---------------------------------------------------------------------------
# Relatedness graph
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class GraphNode:
    id: str
    label: str
    path: str
    size: float
    group: str


@dataclass(frozen=True)
class FileSummary:
    path: str
    bookmark_count: int
    access_count: int


@dataclass(frozen=True)
class GraphLink:
    source: str
    target: str
    weight: int
    value: float          # log-scaled weight, for display


@dataclass
class Graph:
    nodes: list[GraphNode] = field(default_factory=list)
    files: list[FileSummary] = field(default_factory=list)
    links: list[GraphLink] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "nodes": [n.__dict__ for n in self.nodes],
            "files": [f.__dict__ for f in self.files],
            "links": [link.__dict__ for link in self.links],
        }


def node_size(bookmark: Bookmark, node_scale: float = 1.5) -> float:
    return math.sqrt(bookmark.access_count + 1) * 2 * node_scale + 2


def relatedness_graph(bookmarks: Iterable[Bookmark], node_scale: float = 1.5) -> Graph:
    """Bookmark nodes, per-file aggregates and file-to-file links.

    Link weight between two files is the number of bookmarks in either file.
    O(F^2) in the number of files.
    """
    snapshot = list(bookmarks)
    per_file: dict[str, list[Bookmark]] = defaultdict(list)
    for b in snapshot:
        per_file[b.file_path].append(b)

    graph = Graph()
    graph.nodes = [
        GraphNode(
            id=b.id,
            label=b.label,
            path=b.file_path,
            size=node_size(b, node_scale),
            group=os.path.dirname(b.file_path),
        )
        for b in snapshot
    ]
    paths = sorted(per_file)
    graph.files = [
        FileSummary(
            path=p,
            bookmark_count=len(per_file[p]),
            access_count=sum(b.access_count for b in per_file[p]),
        )
        for p in paths
    ]
    for source, target in combinations(paths, 2):
        weight = len(per_file[source]) + len(per_file[target])
        graph.links.append(GraphLink(source=source, target=target, weight=weight, value=math.log(weight + 1)))
    return graph


class GraphCache:
    """Relatedness graph recomputed lazily, only after the store has changed."""

    def __init__(self, store: BookmarkStore, node_scale: float = 1.5) -> None:
        self.store = store
        self.node_scale = node_scale
        self._graph: Graph | None = None
        self.computations = 0
        self._disconnect = store.changed.connect(self.invalidate)

    def invalidate(self) -> None:
        self._graph = None

    def set_node_scale(self, node_scale: float) -> None:
        self.node_scale = node_scale
        self.invalidate()

    def get(self) -> Graph:
        if self._graph is None:
            self._graph = relatedness_graph(self.store.snapshot(), self.node_scale)
            self.computations += 1
        return self._graph

    def close(self) -> None:
        self._disconnect()
