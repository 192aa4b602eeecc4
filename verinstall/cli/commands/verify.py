"""``verinstall verify MANIFEST FILE`` — dry-run digest check, no install.

Exit codes: 0 digest matches, 2 mismatch, 3 file unreadable, 4 bad manifest.
The checked file is never modified or deleted.
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.markup import escape

from verinstall.cli._common import build_settings, console, fail, load_store, select
from verinstall.core.errors import DigestMismatchError, InstallerError
from verinstall.core.pipeline import InstallPipeline


def verify_cmd(
    manifest_path: Path = typer.Argument(..., help="Manifest file (.json, .toml or formula .rb)."),
    local_file: Path = typer.Argument(..., help="Local artifact to check."),
    name: str = typer.Option(
        None, "--name", "-n", help="Package to check when the manifest holds several."
    ),
    version: str = typer.Option(None, "--version", help="Exact version to check against."),
) -> None:
    """Check a local file against a manifest's digest without installing it."""
    store = load_store(manifest_path)
    manifest = select(store, name, version)
    pipeline = InstallPipeline(build_settings())

    try:
        digest = pipeline.verify_local(manifest, local_file)
    except DigestMismatchError as exc:
        console.print(
            f"[bold red]Digest mismatch[/bold red] for {escape(str(local_file))}\n"
            f"  expected {exc.expected}\n"
            f"  actual   {exc.actual}",
            soft_wrap=True,
        )
        raise typer.Exit(code=exc.exit_code) from exc
    except InstallerError as exc:
        raise fail(exc) from exc

    console.print(
        f"[bold green]OK[/bold green] {escape(manifest.name)} {escape(manifest.version)} "
        f"{manifest.algorithm.value}:{digest}",
        soft_wrap=True,
    )
