"""Tests for the digest verifier and streaming hash helpers."""

from __future__ import annotations

import hashlib

import pytest

from verinstall.core.errors import DigestMismatchError
from verinstall.core.hasher import digests_equal, file_digest, sha256_hex
from verinstall.core.verifier import verify

PAYLOAD = b"voiceterm release bytes\n" * 1000
DIGEST = hashlib.sha256(PAYLOAD).hexdigest()


@pytest.fixture
def artifact(tmp_path):
    path = tmp_path / "voiceterm.download"
    path.write_bytes(PAYLOAD)
    return path


class TestHasher:
    def test_file_digest_streams(self, artifact):
        assert file_digest(artifact, chunk_size=7) == DIGEST

    def test_sha256_hex(self):
        assert sha256_hex(PAYLOAD) == DIGEST

    def test_digests_equal_ignores_case(self):
        assert digests_equal(DIGEST.upper(), DIGEST)
        assert not digests_equal(DIGEST, "0" * 64)


class TestVerify:
    def test_match_returns_digest(self, artifact):
        assert verify(artifact, DIGEST) == DIGEST
        assert artifact.exists()

    def test_match_is_case_insensitive(self, artifact):
        assert verify(artifact, DIGEST.upper()) == DIGEST

    def test_mismatch_deletes_file(self, artifact):
        with pytest.raises(DigestMismatchError) as exc_info:
            verify(artifact, "0" * 64)

        err = exc_info.value
        assert err.expected == "0" * 64
        assert err.actual == DIGEST
        assert err.exit_code == 2
        assert not artifact.exists()

    def test_mismatch_can_keep_file(self, artifact):
        with pytest.raises(DigestMismatchError):
            verify(artifact, "0" * 64, keep_on_mismatch=True)
        assert artifact.read_bytes() == PAYLOAD

    def test_single_flipped_byte_detected(self, artifact):
        data = bytearray(PAYLOAD)
        data[len(data) // 2] ^= 0x01
        artifact.write_bytes(bytes(data))
        with pytest.raises(DigestMismatchError):
            verify(artifact, DIGEST)

    def test_unknown_algorithm_rejected(self, artifact):
        with pytest.raises(ValueError):
            verify(artifact, DIGEST, algorithm="md5")
