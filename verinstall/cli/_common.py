"""Helpers shared by the CLI commands."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape

from verinstall.config import InstallerSettings
from verinstall.core.errors import InstallerError, ParseError
from verinstall.core.manifest_store import ManifestStore
from verinstall.models.manifest import Manifest

console = Console()

STAGE_LABELS = {
    "load": "Manifest",
    "fetch": "Fetch",
    "verify": "Verify",
    "install": "Install",
}


def fail(exc: InstallerError) -> typer.Exit:
    """Print one line naming the failed stage and cause; return the Exit to raise."""
    label = STAGE_LABELS.get(exc.stage, exc.stage.capitalize())
    console.print(f"[bold red]{label} failed:[/bold red] {escape(str(exc))}", soft_wrap=True)
    return typer.Exit(code=exc.exit_code)


def build_settings(**overrides: Any) -> InstallerSettings:
    """InstallerSettings with non-None CLI overrides applied."""
    try:
        return InstallerSettings(**{k: v for k, v in overrides.items() if v is not None})
    except ValidationError as exc:
        console.print(f"[bold red]Invalid settings:[/bold red] {escape(str(exc))}", soft_wrap=True)
        raise typer.Exit(code=ParseError.exit_code) from exc


def load_store(manifest_path: Path) -> ManifestStore:
    try:
        return ManifestStore.from_path(manifest_path)
    except InstallerError as exc:
        raise fail(exc) from exc


def select(
    store: ManifestStore,
    name: str | None,
    version: str | None = None,
    digest: str | None = None,
) -> Manifest:
    try:
        return store.get(name, version=version, digest=digest)
    except KeyError as exc:
        raise fail(ParseError(exc.args[0] if exc.args else str(exc))) from exc
    except InstallerError as exc:
        raise fail(exc) from exc
