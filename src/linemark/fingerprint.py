"""Short content digests used to detect when a bookmarked line drifts."""

from __future__ import annotations

import hashlib

FINGERPRINT_LENGTH = 8


def fingerprint(text: str) -> str:
    """Return the first 8 hex chars of the SHA-1 of text.

    Used only as an equality oracle, never decoded.
    """
    return hashlib.sha1(text.encode("utf-8", errors="replace")).hexdigest()[:FINGERPRINT_LENGTH]  # noqa: S324
