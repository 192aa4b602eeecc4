"""``verinstall install MANIFEST`` — fetch, verify and install an artifact.

Exit codes: 0 installed (or already up to date), 1 fetch failure,
2 digest mismatch, 3 filesystem/permission failure, 4 bad manifest.
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.markup import escape
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    DownloadColumn,
    Progress,
    TextColumn,
    TransferSpeedColumn,
)
from rich.table import Table

from verinstall.cli._common import build_settings, console, fail, load_store, select
from verinstall.core.errors import STAGE_EXIT_CODES, InstallerError
from verinstall.core.pipeline import InstallPipeline
from verinstall.models.manifest import Manifest
from verinstall.models.pipeline import InstalledArtifact, InstallReport


def _progress_factory(progress: Progress):
    def _for(manifest: Manifest):
        task_id = progress.add_task(manifest.name, total=None)

        def _update(done: int, total: int) -> None:
            progress.update(task_id, completed=done, total=total or None)

        return _update

    return _for


def _print_success(manifest: Manifest, artifact: InstalledArtifact) -> None:
    status = (
        "[bold green]Installed[/bold green]"
        if artifact.changed
        else "[bold yellow]Already installed[/bold yellow]"
    )
    console.print(
        Panel(
            "\n".join([
                f"{status} {escape(manifest.name)} {escape(manifest.version)}",
                "",
                f"[bold]Path:[/bold]       {escape(str(artifact.dest_path))}",
                f"[bold]SHA-256:[/bold]    {artifact.digest}",
                f"[bold]Size:[/bold]       {artifact.size_bytes} bytes",
                f"[bold]Executable:[/bold] {'yes' if artifact.executable else 'no'}",
            ]),
            title="[bold]verinstall[/bold]",
            border_style="green",
            padding=(1, 2),
        )
    )


def _print_batch(reports: list[InstallReport]) -> None:
    table = Table(title="Install results")
    table.add_column("Name", style="cyan")
    table.add_column("Version", style="green")
    table.add_column("State")
    table.add_column("Detail")
    for report in reports:
        if report.succeeded:
            state = "[green]done[/green]"
            detail = str(report.artifact.dest_path) if report.artifact else ""
        else:
            state = "[red]failed[/red]"
            detail = report.error or ""
        table.add_row(report.manifest.name, report.manifest.version, state, escape(detail))
    console.print(table)


def install_cmd(
    manifest_path: Path = typer.Argument(
        ...,
        help="Manifest file (.json, .toml or formula .rb).",
    ),
    name: str = typer.Option(
        None, "--name", "-n", help="Package to install when the manifest holds several."
    ),
    version: str = typer.Option(
        None, "--version", help="Exact version to install (default: highest)."
    ),
    digest: str = typer.Option(
        None, "--digest", help="Pick the record with this SHA-256 when versions repeat."
    ),
    install_all: bool = typer.Option(
        False, "--all", help="Install the highest version of every package in the manifest."
    ),
    prefix: Path = typer.Option(
        None, "--prefix", "-p", help="Install root (default: $VERINSTALL_PREFIX or ~/.local)."
    ),
    timeout: float = typer.Option(
        None, "--timeout", "-t", help="Per-request network timeout in seconds."
    ),
    retries: int = typer.Option(
        None, "--retries", "-r", help="Total download attempts for transient failures."
    ),
    show_progress: bool = typer.Option(
        True, "--progress/--no-progress", help="Show a download progress bar."
    ),
) -> None:
    """Fetch, verify and atomically install the artifact a manifest describes."""
    settings = build_settings(prefix=prefix, timeout_seconds=timeout, max_retries=retries)
    store = load_store(manifest_path)

    if install_all:
        manifests = [store.get(n) for n in store.names]
    else:
        manifests = [select(store, name, version, digest)]

    progress = Progress(
        TextColumn("[bold blue]{task.description}"),
        BarColumn(),
        DownloadColumn(),
        TransferSpeedColumn(),
        console=console,
        transient=True,
        disable=not show_progress,
    )
    pipeline = InstallPipeline(settings, progress_factory=_progress_factory(progress))

    if install_all:
        with progress:
            reports = pipeline.install_many(manifests)
        _print_batch(reports)
        failed = [r for r in reports if not r.succeeded]
        if failed:
            # First failure in manifest order decides the exit code.
            raise typer.Exit(code=STAGE_EXIT_CODES.get(failed[0].failed_stage or "", 1))
        return

    try:
        with progress:
            report = pipeline.run(manifests[0])
    except InstallerError as exc:
        raise fail(exc) from exc

    _print_success(report.manifest, report.artifact)
