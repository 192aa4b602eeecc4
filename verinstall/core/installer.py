"""Atomic installer — places a verified artifact at its destination.

The new file is written to a sibling temp file in the destination directory,
flushed, given its final mode, and only then renamed over the destination
with ``os.replace``.  A concurrent reader therefore sees either the previous
file or the new one, never a partial write.  When several installs race on
the same destination the last rename wins.

Installing identical content with an identical mode is a no-op, so running
an install twice leaves the filesystem exactly as running it once.
"""

from __future__ import annotations

import logging
import os
import shutil
import stat
import tarfile
import tempfile
import zipfile
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path, PurePosixPath

from verinstall.core.errors import FilesystemError, filesystem_error
from verinstall.core.hasher import DEFAULT_CHUNK_SIZE, file_digest
from verinstall.models.manifest import DestKind, InstallAction, Manifest
from verinstall.models.pipeline import InstalledArtifact

logger = logging.getLogger(__name__)

EXECUTABLE_MODE = 0o755
REGULAR_MODE = 0o644


def mode_for(dest_kind: DestKind | str) -> int:
    """Permission bits for a destination kind: executables in ``bin``."""
    return EXECUTABLE_MODE if DestKind(dest_kind) == DestKind.BIN else REGULAR_MODE


def _fsync_dir(directory: Path) -> None:
    # Directories cannot be opened for fsync on Windows.
    if os.name != "posix":
        return
    fd = os.open(directory, os.O_RDONLY)
    try:
        os.fsync(fd)
    finally:
        os.close(fd)


def _already_installed(dest: Path, digest: str, size: int, mode: int) -> bool:
    try:
        st = dest.stat()
    except FileNotFoundError:
        return False
    if not stat.S_ISREG(st.st_mode):
        return False
    if st.st_size != size or stat.S_IMODE(st.st_mode) != mode:
        return False
    return file_digest(dest) == digest


# ---------------------------------------------------------------------------
# Single-file install
# ---------------------------------------------------------------------------


def install(
    temp_file: str | Path,
    dest_path: str | Path,
    dest_kind: DestKind | str = DestKind.BIN,
    *,
    digest: str | None = None,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> InstalledArtifact:
    """Atomically place *temp_file* at *dest_path*.

    Parameters
    ----------
    temp_file:
        The verified source file.  It is copied, not moved; the caller
        still owns and removes it.
    dest_path:
        Final location.  Parent directories are created as needed.
    dest_kind:
        ``bin`` installs get mode 0755, everything else 0644.
    digest:
        Known SHA-256 of *temp_file*; computed when omitted.

    Raises
    ------
    InstallPermissionError
        If the destination (or a parent) is not writable.
    FilesystemError
        For any other filesystem failure.
    """
    source = Path(temp_file)
    dest = Path(dest_path)
    mode = mode_for(dest_kind)

    try:
        size = source.stat().st_size
        digest = digest or file_digest(source, chunk_size=chunk_size)
    except OSError as exc:
        raise filesystem_error("reading", source, exc) from exc

    if dest.is_dir():
        raise FilesystemError(f"Destination {dest} is a directory")

    try:
        dest.parent.mkdir(parents=True, exist_ok=True)
        up_to_date = _already_installed(dest, digest, size, mode)
    except OSError as exc:
        raise filesystem_error("preparing", dest, exc) from exc

    if up_to_date:
        logger.info("%s already up to date", dest)
        return InstalledArtifact(
            dest_path=dest,
            digest=digest,
            size_bytes=size,
            executable=bool(mode & stat.S_IXUSR),
            changed=False,
        )

    tmp_name: str | None = None
    try:
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{dest.name}.", suffix=".partial", dir=dest.parent
        )
        with os.fdopen(fd, "wb") as out, source.open("rb") as src:
            shutil.copyfileobj(src, out, chunk_size)
            out.flush()
            os.fsync(out.fileno())
        os.chmod(tmp_name, mode)
        os.replace(tmp_name, dest)
        tmp_name = None
        _fsync_dir(dest.parent)
    except OSError as exc:
        raise filesystem_error("installing", dest, exc) from exc
    finally:
        if tmp_name is not None:
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass

    logger.info("Installed %s (%d bytes, mode %o)", dest, size, mode)
    return InstalledArtifact(
        dest_path=dest,
        digest=digest,
        size_bytes=size,
        executable=bool(mode & stat.S_IXUSR),
        changed=True,
    )


# ---------------------------------------------------------------------------
# Archives
# ---------------------------------------------------------------------------


def _check_member_name(name: str, archive: Path) -> None:
    member = PurePosixPath(name.replace("\\", "/"))
    if member.is_absolute() or ".." in member.parts:
        raise FilesystemError(f"Archive {archive} has unsafe member {name!r}")


def extract_archive(archive: str | Path, dest_dir: str | Path) -> None:
    """Unpack a tar (any compression) or zip archive into *dest_dir*.

    Members that would land outside *dest_dir* are rejected.
    """
    archive = Path(archive)
    dest_dir = Path(dest_dir)
    try:
        if tarfile.is_tarfile(archive):
            with tarfile.open(archive, "r:*") as tar:
                for member in tar.getmembers():
                    _check_member_name(member.name, archive)
                tar.extractall(dest_dir, filter="data")
        elif zipfile.is_zipfile(archive):
            with zipfile.ZipFile(archive) as zf:
                for name in zf.namelist():
                    _check_member_name(name, archive)
                zf.extractall(dest_dir)
        else:
            raise FilesystemError(f"{archive} is not a tar or zip archive")
    except (tarfile.TarError, zipfile.BadZipFile) as exc:
        raise FilesystemError(f"Cannot extract {archive}: {exc}") from exc
    except OSError as exc:
        raise filesystem_error("extracting", archive, exc) from exc


@contextmanager
def staging_dir(parent: Path | None = None) -> Iterator[Path]:
    """Private scratch directory, removed on exit."""
    try:
        path = Path(tempfile.mkdtemp(prefix="verinstall-stage-", dir=parent))
    except OSError as exc:
        where = parent or tempfile.gettempdir()
        raise filesystem_error("creating staging directory in", where, exc) from exc
    try:
        yield path
    finally:
        shutil.rmtree(path, ignore_errors=True)


def locate_member(root: Path, relative: str) -> Path:
    """Find *relative* under *root*, looking through a single top-level directory.

    Release tarballs often wrap their contents in ``name-version/``.
    """
    candidate = root / relative
    if candidate.is_file():
        return candidate
    try:
        entries = list(root.iterdir())
    except OSError as exc:
        raise filesystem_error("listing", root, exc) from exc
    if len(entries) == 1 and entries[0].is_dir():
        nested = entries[0] / relative
        if nested.is_file():
            return nested
    raise FilesystemError(f"Archive does not contain {relative!r}")


# ---------------------------------------------------------------------------
# Manifest-driven install
# ---------------------------------------------------------------------------


def destination_for(manifest: Manifest, prefix: str | Path) -> Path:
    """``{prefix}/{dest_kind}/{basename(source_relative_path)}``."""
    rule = manifest.install_rule
    return Path(prefix) / rule.dest_kind.value / rule.dest_name


def install_manifest(
    downloaded: str | Path,
    manifest: Manifest,
    prefix: str | Path,
    *,
    digest: str | None = None,
    scratch: Path | None = None,
) -> InstalledArtifact:
    """Apply a manifest's install rule to a verified download.

    ``copy`` installs the download itself; ``extract`` unpacks it into a
    private staging directory and installs ``source_relative_path`` from it.
    """
    rule = manifest.install_rule
    dest = destination_for(manifest, prefix)

    if rule.action == InstallAction.COPY:
        artifact = install(downloaded, dest, rule.dest_kind, digest=digest)
    else:
        with staging_dir(scratch) as stage:
            extract_archive(downloaded, stage)
            member = locate_member(stage, rule.source_relative_path)
            artifact = install(member, dest, rule.dest_kind)

    return artifact.model_copy(update={"name": manifest.name, "version": manifest.version})
