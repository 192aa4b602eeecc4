"""Failure taxonomy for the install pipeline.

Every error names the pipeline stage it came from and the process exit code
the CLI reports for it.  Stages fail closed: an error raised by one stage
aborts the run before any later stage touches the destination.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, ClassVar

if TYPE_CHECKING:
    from pathlib import Path

    from verinstall.models.pipeline import InstallReport


class InstallerError(RuntimeError):
    """Base class for all pipeline failures.

    ``report`` is attached by the pipeline when the error aborts a run.
    """

    stage: ClassVar[str] = "pipeline"
    exit_code: ClassVar[int] = 1
    report: InstallReport | None = None


# ---------------------------------------------------------------------------
# Load
# ---------------------------------------------------------------------------


class ParseError(InstallerError):
    """Raised when a manifest source is malformed or fails validation."""

    stage = "load"
    exit_code = 4


# ---------------------------------------------------------------------------
# Fetch
# ---------------------------------------------------------------------------


class FetchError(InstallerError):
    """Base class for download failures."""

    stage = "fetch"
    exit_code = 1

    @property
    def transient(self) -> bool:
        """Whether retrying the request may succeed."""
        return False


class NetworkError(FetchError):
    """Connection-level failure (DNS, refused, reset, truncated body)."""

    @property
    def transient(self) -> bool:
        return True


class FetchTimeoutError(NetworkError):
    """The server did not answer within the configured timeout."""


class HttpStatusError(FetchError):
    """The server answered with a non-success HTTP status.

    5xx responses are transient and retried; 4xx are permanent.
    """

    def __init__(self, url: str, status_code: int, reason: str = "") -> None:
        self.url = url
        self.status_code = status_code
        self.reason = reason
        detail = f" {reason}" if reason else ""
        super().__init__(f"HTTP {status_code}{detail} for {url}")

    @property
    def transient(self) -> bool:
        return self.status_code >= 500


# ---------------------------------------------------------------------------
# Verify
# ---------------------------------------------------------------------------


class DigestMismatchError(InstallerError):
    """Downloaded bytes do not hash to the manifest's expected digest.

    Kept separate from fetch errors: a mismatch means the artifact is
    corrupted or tampered with, not that the network misbehaved.
    """

    stage = "verify"
    exit_code = 2

    def __init__(self, path: str, expected: str, actual: str, algorithm: str = "sha256") -> None:
        self.path = path
        self.expected = expected
        self.actual = actual
        self.algorithm = algorithm
        super().__init__(
            f"{algorithm} mismatch for {path}: expected {expected}, got {actual}"
        )


# ---------------------------------------------------------------------------
# Install
# ---------------------------------------------------------------------------


class FilesystemError(InstallerError):
    """Placing the verified artifact failed."""

    stage = "install"
    exit_code = 3


class InstallPermissionError(FilesystemError):
    """The destination (or its directory) is not writable."""


def filesystem_error(action: str, path: str | Path | None, exc: OSError) -> FilesystemError:
    """Wrap a local ``OSError``; permission failures get their own type."""
    if isinstance(exc, PermissionError):
        return InstallPermissionError(f"Permission denied {action} {path}: {exc}")
    return FilesystemError(f"Failed {action} {path}: {exc}")


# ---------------------------------------------------------------------------
# State handling
# ---------------------------------------------------------------------------


class InvalidTransitionError(RuntimeError):
    """Raised when a requested pipeline state transition is not valid."""


STAGE_EXIT_CODES: dict[str, int] = {
    ParseError.stage: ParseError.exit_code,
    FetchError.stage: FetchError.exit_code,
    DigestMismatchError.stage: DigestMismatchError.exit_code,
    FilesystemError.stage: FilesystemError.exit_code,
}
