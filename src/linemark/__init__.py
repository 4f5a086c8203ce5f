"""Line bookmarks anchored by content fingerprints, shared between windows.

Layout:
    linemark.toml           # project config: options and workspace roots
    .linemark/
        store/              # diskcache blobs, one per storage key
        settings.json       # runtime overrides (incl. a generated secret)

Storage keys:
    "bookmarks"                       # storage_scope = "global"
    "bookmarks:file:///path/to/root"  # storage_scope = "per-workspace"

Blob: {"v":1, "bookmarks":[{...}, ...]}, AES-256-GCM encrypted when
encryption_enabled is set (nonce || ciphertext+tag).

Windows sharing a store are merged per bookmark id: the copy accessed most
recently wins.
"""

from linemark.config import LinemarkConfig, Settings, init_config, load_config
from linemark.models import Bookmark, Location
from linemark.session import BookmarkSession
from linemark.store import BookmarkStore, reconcile

__all__ = [
    "Bookmark",
    "BookmarkSession",
    "BookmarkStore",
    "LinemarkConfig",
    "Location",
    "Settings",
    "init_config",
    "load_config",
    "reconcile",
]
