"""verinstall data models — all Pydantic v2, all frozen (immutable)."""

from verinstall.models.manifest import (
    ARCHIVE_SUFFIXES,
    DIGEST_HEX_LENGTHS,
    DestKind,
    DigestAlgorithm,
    InstallAction,
    InstallRule,
    Manifest,
    is_archive_url,
)
from verinstall.models.pipeline import (
    TERMINAL_STATES,
    VALID_TRANSITIONS,
    DownloadedFile,
    InstalledArtifact,
    InstallReport,
    PipelineState,
    StateTransition,
)

__all__ = [
    # manifest
    "ARCHIVE_SUFFIXES",
    "DIGEST_HEX_LENGTHS",
    "DestKind",
    "DigestAlgorithm",
    "InstallAction",
    "InstallRule",
    "Manifest",
    "is_archive_url",
    # pipeline
    "PipelineState",
    "StateTransition",
    "VALID_TRANSITIONS",
    "TERMINAL_STATES",
    "DownloadedFile",
    "InstalledArtifact",
    "InstallReport",
]
