"""Pipeline state models — one linear run per install invocation."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

from verinstall.models.manifest import Manifest


class PipelineState(str, Enum):
    """States of a single install invocation."""

    LOADED = "loaded"
    FETCHING = "fetching"
    VERIFYING = "verifying"
    INSTALLING = "installing"
    DONE = "done"
    FAILED = "failed"


# Strictly linear; FAILED is reachable from every non-terminal state.
# DONE and FAILED are terminal; a retry is a new invocation.
VALID_TRANSITIONS: dict[PipelineState, set[PipelineState]] = {
    PipelineState.LOADED: {PipelineState.FETCHING, PipelineState.FAILED},
    PipelineState.FETCHING: {PipelineState.VERIFYING, PipelineState.FAILED},
    PipelineState.VERIFYING: {PipelineState.INSTALLING, PipelineState.FAILED},
    PipelineState.INSTALLING: {PipelineState.DONE, PipelineState.FAILED},
    PipelineState.DONE: set(),
    PipelineState.FAILED: set(),
}

TERMINAL_STATES: frozenset[PipelineState] = frozenset(
    {PipelineState.DONE, PipelineState.FAILED}
)


class StateTransition(BaseModel):
    """Records a single state transition."""

    model_config = ConfigDict(frozen=True)

    from_state: PipelineState
    to_state: PipelineState
    reason: str | None = None  # populated when entering FAILED
    at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class DownloadedFile(BaseModel):
    """Bytes fetched to a temporary file, owned by the caller until consumed."""

    model_config = ConfigDict(frozen=True)

    path: Path
    url: str
    size_bytes: int
    attempts: int = 1


class InstalledArtifact(BaseModel):
    """The file placed on disk by a successful run."""

    model_config = ConfigDict(frozen=True)

    dest_path: Path
    digest: str
    size_bytes: int
    executable: bool = False
    changed: bool = True  # False when an identical file was already in place
    name: str = ""
    version: str = ""


class InstallReport(BaseModel):
    """Outcome of one pipeline invocation with its full transition history."""

    model_config = ConfigDict(frozen=True)

    manifest: Manifest
    state: PipelineState
    transitions: list[StateTransition] = Field(default_factory=list)
    artifact: InstalledArtifact | None = None
    error: str | None = None
    failed_stage: str | None = None  # "fetch", "verify", ... when FAILED

    @property
    def succeeded(self) -> bool:
        return self.state == PipelineState.DONE
