"""verinstall: verified-download package installer.

Fetches an artifact named by a manifest, checks its SHA-256 digest and
places it atomically under an install prefix:
  - Manifests from JSON, TOML or formula files, immutable once loaded
  - Streaming downloads with bounded retry and exponential backoff
  - Streaming digest verification that fails closed
  - Atomic sibling-temp-then-rename installs, idempotent on repeat
"""

__version__ = "0.1.0"
__description__ = "Verified-download package installer"

from verinstall.core.manifest_loader import load, load_all, loads
from verinstall.core.pipeline import InstallPipeline
from verinstall.cli.app import app as cli

__all__ = ["InstallPipeline", "load", "load_all", "loads", "cli", "__version__"]
