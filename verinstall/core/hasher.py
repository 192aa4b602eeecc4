"""Streaming digest helpers.

Files are hashed chunk by chunk so memory use stays flat no matter how large
the artifact is.
"""

from __future__ import annotations

import hashlib
from pathlib import Path

from verinstall.models.manifest import DigestAlgorithm

DEFAULT_CHUNK_SIZE = 64 * 1024


def new_hasher(algorithm: DigestAlgorithm | str = DigestAlgorithm.SHA256):
    """Return a fresh hashlib object for *algorithm*."""
    return hashlib.new(DigestAlgorithm(algorithm).value)


def sha256_hex(data: bytes) -> str:
    """Return the SHA-256 hex digest of raw bytes."""
    return hashlib.sha256(data).hexdigest()


def file_digest(
    path: Path,
    algorithm: DigestAlgorithm | str = DigestAlgorithm.SHA256,
    *,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> str:
    """Hash a file by streaming it in *chunk_size* blocks."""
    hasher = new_hasher(algorithm)
    with Path(path).open("rb") as fh:
        while True:
            chunk = fh.read(chunk_size)
            if not chunk:
                break
            hasher.update(chunk)
    return hasher.hexdigest()


def digests_equal(expected: str, actual: str) -> bool:
    """Exact hex comparison, case-insensitive."""
    return expected.strip().lower() == actual.strip().lower()
