"""Serialization and optional encryption of the persisted bookmark blob.

Envelope (encryption enabled):
    nonce (12 bytes) || AES-256-GCM ciphertext+tag

Plain (encryption disabled):
    UTF-8 JSON  {"v": 1, "bookmarks": [...]}

The AES key is always SHA-256(secret); the secret itself lives in settings
and is generated on first use.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import secrets
from typing import TYPE_CHECKING, Any

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from linemark.errors import DecryptionError
from linemark.models import Bookmark

if TYPE_CHECKING:
    from collections.abc import Iterable

    from linemark.config import Settings

logger = logging.getLogger("linemark.codec")

_NONCE_LENGTH = 12
_SECRET_LENGTH = 32
_FORMAT_VERSION = 1


# ---------------------------------------------------------------------------
# Primitives
# ---------------------------------------------------------------------------

def derive_key(secret: str) -> bytes:
    """Hash an arbitrary user secret into a 32-byte AES key."""
    return hashlib.sha256(secret.encode("utf-8")).digest()


def generate_secret() -> str:
    """Return a fresh random secret of 32 URL-safe characters."""
    return secrets.token_urlsafe(_SECRET_LENGTH)[:_SECRET_LENGTH]


def encrypt(plaintext: str, key: bytes) -> bytes:
    """Encrypt text under key; a fresh nonce is prepended to the ciphertext."""
    nonce = os.urandom(_NONCE_LENGTH)
    return nonce + AESGCM(key).encrypt(nonce, plaintext.encode("utf-8"), None)


def decrypt(envelope: bytes, key: bytes) -> str:
    """Reverse encrypt(). Raises DecryptionError on a bad envelope or wrong key."""
    if len(envelope) <= _NONCE_LENGTH:
        msg = "ciphertext envelope is truncated"
        raise DecryptionError(msg)
    nonce, body = envelope[:_NONCE_LENGTH], envelope[_NONCE_LENGTH:]
    try:
        plaintext = AESGCM(key).decrypt(nonce, body, None)
    except (InvalidTag, ValueError) as exc:
        msg = "decryption failed: wrong key or corrupt data"
        raise DecryptionError(msg) from exc
    try:
        return plaintext.decode("utf-8")
    except UnicodeDecodeError as exc:
        msg = "decrypted payload is not UTF-8"
        raise DecryptionError(msg) from exc


# ---------------------------------------------------------------------------
# Collection codec
# ---------------------------------------------------------------------------

def dumps(bookmarks: Iterable[Bookmark]) -> str:
    return json.dumps({"v": _FORMAT_VERSION, "bookmarks": [b.to_dict() for b in bookmarks]})


def loads(text: str) -> list[Bookmark]:
    """Parse a serialized collection. Raises DecryptionError when unreadable."""
    try:
        obj: Any = json.loads(text)
    except json.JSONDecodeError as exc:
        msg = f"persisted blob is not valid JSON: {exc}"
        raise DecryptionError(msg) from exc
    items: Any = None
    if isinstance(obj, dict):
        items = obj.get("bookmarks", [])
    elif isinstance(obj, list):  # legacy layout: bare list
        items = obj
    if not isinstance(items, list):
        msg = "persisted blob has an unexpected shape"
        raise DecryptionError(msg)
    bookmarks: list[Bookmark] = []
    for item in items:
        if not isinstance(item, dict):
            logger.warning("skipping malformed bookmark record: %r", item)
            continue
        try:
            bookmarks.append(Bookmark.from_dict(item))
        except (KeyError, TypeError, ValueError):
            logger.warning("skipping malformed bookmark record: %r", item)
    return bookmarks


class BlobCodec:
    """Encodes a collection to bytes, encrypting when settings ask for it."""

    def __init__(self, settings: Settings) -> None:
        self.settings = settings

    @property
    def enabled(self) -> bool:
        return bool(self.settings.get("encryption_enabled"))

    def prepare(self) -> None:
        """Create the first-use secret now, so encode/decode never write settings."""
        if self.enabled:
            self._key()

    def _key(self) -> bytes:
        secret = str(self.settings.get("encryption_secret") or "")
        if not secret:
            secret = generate_secret()
            self.settings.set("encryption_secret", secret)
            logger.info("generated a new encryption secret")
        return derive_key(secret)

    def encode(self, bookmarks: Iterable[Bookmark]) -> bytes:
        text = dumps(bookmarks)
        if not self.enabled:
            return text.encode("utf-8")
        return encrypt(text, self._key())

    def decode(self, blob: bytes) -> list[Bookmark]:
        if not self.enabled:
            try:
                return loads(blob.decode("utf-8"))
            except UnicodeDecodeError as exc:
                msg = "persisted blob is not plain JSON (is encryption disabled by mistake?)"
                raise DecryptionError(msg) from exc
        return loads(decrypt(blob, self._key()))
