"""Content hashing for change and duplicate detection."""

from __future__ import annotations

import hashlib
import os
from pathlib import Path
from typing import BinaryIO, Union

from app.models.schemas import FileFingerprint

CHUNK_SIZE = 64 * 1024


def _hash_handle(handle: BinaryIO) -> str:
    digest = hashlib.sha256()
    for chunk in iter(lambda: handle.read(CHUNK_SIZE), b""):
        digest.update(chunk)
    return digest.hexdigest()


def hash_content(path: Union[str, Path]) -> str:
    """
    Stream the file at ``path`` through SHA-256.

    The digest depends on byte content only, never on metadata.

    Raises:
        OSError: if the file cannot be opened or read
    """
    with open(path, "rb") as handle:
        return _hash_handle(handle)


def quick_signature(path: Union[str, Path]) -> FileFingerprint:
    """
    Fingerprint ``path``: full content hash plus size and mtime.

    Size and mtime are taken from the same open handle that is hashed so
    the three values describe one version of the file.

    Raises:
        OSError: if the file cannot be opened or read
    """
    with open(path, "rb") as handle:
        stat = os.fstat(handle.fileno())
        content_hash = _hash_handle(handle)
    return FileFingerprint(
        path=str(path),
        hash=content_hash,
        size=stat.st_size,
        mtime=stat.st_mtime,
    )
