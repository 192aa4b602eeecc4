"""Digest verification — the gate between download and install.

A mismatch deletes the temp file before raising, so a corrupted or tampered
artifact can never reach the installer.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from verinstall.core.errors import DigestMismatchError
from verinstall.core.hasher import DEFAULT_CHUNK_SIZE, digests_equal, file_digest
from verinstall.models.manifest import DigestAlgorithm

logger = logging.getLogger(__name__)


def verify(
    temp_file: str | Path,
    expected_digest: str,
    algorithm: DigestAlgorithm | str = DigestAlgorithm.SHA256,
    *,
    keep_on_mismatch: bool = False,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> str:
    """Check *temp_file* against *expected_digest* and return the digest.

    The file is hashed in streaming fashion.  Comparison is an exact hex
    match, case-insensitive.

    Parameters
    ----------
    keep_on_mismatch:
        Leave the file in place on mismatch.  Used for dry-run checks of a
        file the caller does not own.

    Raises
    ------
    DigestMismatchError
        If the digests differ.  The file has been deleted unless
        ``keep_on_mismatch`` is set.
    """
    path = Path(temp_file)
    algorithm = DigestAlgorithm(algorithm)
    actual = file_digest(path, algorithm, chunk_size=chunk_size)

    if digests_equal(expected_digest, actual):
        logger.debug("%s %s ok for %s", algorithm.value, actual, path)
        return actual

    logger.error(
        "%s mismatch for %s: expected %s, got %s",
        algorithm.value,
        path,
        expected_digest.lower(),
        actual,
    )
    if not keep_on_mismatch:
        try:
            os.unlink(path)
        except FileNotFoundError:
            pass
    raise DigestMismatchError(str(path), expected_digest.lower(), actual, algorithm.value)
