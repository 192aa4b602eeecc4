"""Installer configuration — env-driven.

Centralized settings using pydantic-settings.  Reads from a .env file and
VERINSTALL_* environment variables; CLI options override per invocation.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from verinstall import __version__


class InstallerSettings(BaseSettings):
    """Installer settings with environment variable overrides.

    Examples
    --------
    Override via environment::

        export VERINSTALL_PREFIX=/opt/tools
        export VERINSTALL_MAX_RETRIES=5
        export VERINSTALL_LOG_LEVEL=DEBUG
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="VERINSTALL_",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Install root: artifacts land in {prefix}/bin, {prefix}/lib, {prefix}/share
    prefix: Path = Field(default_factory=lambda: Path.home() / ".local")

    # Fetching
    timeout_seconds: float = 30.0
    max_retries: int = 3            # total attempts, not extra ones
    backoff_base_seconds: float = 0.5
    backoff_max_seconds: float = 8.0
    chunk_size: int = 64 * 1024
    user_agent: str = f"verinstall/{__version__}"

    # Scratch space for downloads; None uses the system temp dir
    tmp_dir: Path | None = None

    # Independent installs run side by side up to this many at once
    max_parallel_installs: int = 4

    # Observability
    log_level: str = "INFO"

    @field_validator("max_retries")
    @classmethod
    def _at_least_one_attempt(cls, value: int) -> int:
        if value < 1:
            raise ValueError("max_retries must be >= 1")
        return value

    @field_validator("timeout_seconds", "chunk_size")
    @classmethod
    def _positive(cls, value):
        if value <= 0:
            raise ValueError("must be positive")
        return value

    @field_validator("log_level")
    @classmethod
    def _upper(cls, value: str) -> str:
        return value.upper()
