"""Install pipeline — the coordinator for one verified install.

Wires Fetcher, Verifier and Installer behind the per-invocation state
machine::

    loaded -> fetching -> verifying -> installing -> done
                 \\            \\             \\
                  +------------+-------------+--> failed(reason)

Every stage fails closed: an error aborts the run before the destination is
touched, the download temp file is always removed, and the error is
re-raised with the run's ``InstallReport`` attached.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

from verinstall.config import InstallerSettings
from verinstall.core.errors import FilesystemError, InstallerError, filesystem_error
from verinstall.core.fetcher import Fetcher, ProgressCallback
from verinstall.core.installer import destination_for, install_manifest
from verinstall.core.state_machine import InstallStateMachine
from verinstall.core.verifier import verify
from verinstall.models.manifest import Manifest
from verinstall.models.pipeline import (
    DownloadedFile,
    InstalledArtifact,
    InstallReport,
    PipelineState,
)

logger = logging.getLogger(__name__)


class InstallPipeline:
    """Runs Fetcher -> Verifier -> Installer for a manifest.

    Parameters
    ----------
    settings:
        Installer settings.  Uses environment-derived defaults if omitted.
    fetcher:
        Pre-built fetcher (tests inject one with a fake session).  Built
        from ``settings`` when omitted.
    prefix:
        Install root; overrides ``settings.prefix``.
    progress_factory:
        Called with each manifest to get a download progress callback.
    """

    def __init__(
        self,
        settings: InstallerSettings | None = None,
        *,
        fetcher: Fetcher | None = None,
        prefix: str | Path | None = None,
        progress_factory: Callable[[Manifest], ProgressCallback | None] | None = None,
    ) -> None:
        self.settings = settings or InstallerSettings()
        self._fetcher = fetcher
        self.prefix = Path(prefix) if prefix is not None else self.settings.prefix
        self._progress_factory = progress_factory

    def _get_fetcher(self) -> Fetcher:
        if self._fetcher is None:
            self._fetcher = Fetcher.from_settings(self.settings)
        return self._fetcher

    def destination(self, manifest: Manifest) -> Path:
        """Where *manifest* installs under this pipeline's prefix."""
        return destination_for(manifest, self.prefix)

    # ------------------------------------------------------------------
    # Full run
    # ------------------------------------------------------------------

    def run(self, manifest: Manifest, *, fetcher: Fetcher | None = None) -> InstallReport:
        """Fetch, verify and install *manifest*.

        Returns the ``InstallReport`` on success.  On failure the stage's
        ``InstallerError`` is re-raised with ``error.report`` set.
        """
        fetcher = fetcher or self._get_fetcher()
        machine = InstallStateMachine(f"{manifest.name} {manifest.version}")
        downloaded: DownloadedFile | None = None
        artifact: InstalledArtifact | None = None
        progress = self._progress_factory(manifest) if self._progress_factory else None

        logger.info(
            "Installing %s %s from %s", manifest.name, manifest.version, manifest.download_url
        )
        try:
            machine.transition(PipelineState.FETCHING)
            downloaded = fetcher.fetch(manifest.download_url, progress=progress)

            machine.transition(PipelineState.VERIFYING)
            digest = verify(
                downloaded.path,
                manifest.expected_digest,
                manifest.algorithm,
                chunk_size=self.settings.chunk_size,
            )

            machine.transition(PipelineState.INSTALLING)
            artifact = install_manifest(
                downloaded.path,
                manifest,
                self.prefix,
                digest=digest,
                scratch=self.settings.tmp_dir,
            )

            machine.transition(PipelineState.DONE)
        except InstallerError as exc:
            self._fail(manifest, machine, artifact, exc)
            raise
        except OSError as exc:
            error = filesystem_error(f"while {machine.state.value}", manifest.name, exc)
            self._fail(manifest, machine, artifact, error)
            raise error from exc
        except Exception as exc:
            machine.fail(f"unexpected: {exc}")
            raise
        finally:
            if downloaded is not None:
                try:
                    os.unlink(downloaded.path)
                except FileNotFoundError:
                    pass

        logger.info(
            "%s %s %s at %s",
            manifest.name,
            manifest.version,
            "installed" if artifact.changed else "already installed",
            artifact.dest_path,
        )
        return self._report(manifest, machine, artifact, None)

    def _fail(
        self,
        manifest: Manifest,
        machine: InstallStateMachine,
        artifact: InstalledArtifact | None,
        exc: InstallerError,
    ) -> None:
        machine.fail(f"{exc.stage}: {exc}")
        exc.report = self._report(manifest, machine, artifact, str(exc), exc.stage)
        logger.error(
            "Install of %s %s failed during %s: %s",
            manifest.name,
            manifest.version,
            exc.stage,
            exc,
        )

    @staticmethod
    def _report(
        manifest: Manifest,
        machine: InstallStateMachine,
        artifact: InstalledArtifact | None,
        error: str | None,
        failed_stage: str | None = None,
    ) -> InstallReport:
        return InstallReport(
            manifest=manifest,
            state=machine.state,
            transitions=machine.history,
            artifact=artifact,
            error=error,
            failed_stage=failed_stage,
        )

    # ------------------------------------------------------------------
    # Dry run
    # ------------------------------------------------------------------

    def verify_local(self, manifest: Manifest, path: str | Path) -> str:
        """Check a local file against *manifest* without installing it.

        The file is never deleted, even on mismatch.

        Raises
        ------
        DigestMismatchError
            On mismatch.
        FilesystemError
            If the file cannot be read.
        """
        path = Path(path)
        try:
            return verify(
                path,
                manifest.expected_digest,
                manifest.algorithm,
                keep_on_mismatch=True,
                chunk_size=self.settings.chunk_size,
            )
        except OSError as exc:
            raise FilesystemError(f"Cannot read {path}: {exc}") from exc

    # ------------------------------------------------------------------
    # Batches
    # ------------------------------------------------------------------

    def install_many(
        self, manifests: Iterable[Manifest], *, max_workers: int | None = None
    ) -> list[InstallReport]:
        """Run independent installs side by side; one report per manifest.

        Failures do not stop the batch: a failed run contributes its
        ``FAILED`` report.  Each worker gets its own fetcher unless one was
        injected at construction.
        """
        manifests = list(manifests)
        workers = max_workers or self.settings.max_parallel_installs

        def _one(manifest: Manifest) -> InstallReport:
            own = None if self._fetcher is not None else Fetcher.from_settings(self.settings)
            try:
                return self.run(manifest, fetcher=own)
            except InstallerError as exc:
                if exc.report is None:
                    raise
                return exc.report
            finally:
                if own is not None:
                    own.close()

        with ThreadPoolExecutor(max_workers=max(1, workers)) as pool:
            return list(pool.map(_one, manifests))
