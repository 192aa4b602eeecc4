"""``verinstall info MANIFEST`` — list the records a manifest source holds."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.markup import escape
from rich.table import Table

from verinstall.cli._common import build_settings, console, load_store
from verinstall.core.installer import destination_for


def info_cmd(
    manifest_path: Path = typer.Argument(..., help="Manifest file (.json, .toml or formula .rb)."),
    prefix: Path = typer.Option(None, "--prefix", "-p", help="Install root used for the Destination column."),
) -> None:
    """Show every manifest in a source and where it would install."""
    settings = build_settings(prefix=prefix)
    store = load_store(manifest_path)

    table = Table(title=f"Manifests in {manifest_path.name}")
    table.add_column("Name", style="cyan")
    table.add_column("Version", style="green")
    table.add_column("Action")
    table.add_column("Destination")
    table.add_column("SHA-256", style="dim")

    for manifest in store:
        table.add_row(
            manifest.name,
            manifest.version,
            manifest.install_rule.action.value,
            str(destination_for(manifest, settings.prefix)),
            manifest.expected_digest[:12],
        )

    console.print(table)
    for manifest in store:
        if manifest.desc:
            console.print(f"[bold]{escape(manifest.name)}[/bold]: {escape(manifest.desc)}", highlight=False)
