"""Main Typer application — imports and registers all CLI commands.

Entry point: ``verinstall`` (configured via pyproject.toml [project.scripts]).

Commands: install, verify, info.
"""

from __future__ import annotations

import logging

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler

from verinstall import __version__
from verinstall.cli.commands.info import info_cmd
from verinstall.cli.commands.install import install_cmd
from verinstall.cli.commands.verify import verify_cmd
from verinstall.config import InstallerSettings

app = typer.Typer(
    name="verinstall",
    help="verinstall: fetch, verify and atomically install manifest-described artifacts.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)

# Register subcommands
app.command(name="install", help="Fetch, verify and install an artifact.")(install_cmd)
app.command(name="verify", help="Check a local file against a manifest (no install).")(verify_cmd)
app.command(name="info", help="List the manifests in a source.")(info_cmd)


def configure_logging(level: str) -> None:
    """Route stdlib logging through Rich on stderr."""
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def _settings_log_level() -> str:
    try:
        return InstallerSettings().log_level
    except ValidationError:
        # Commands report invalid settings themselves.
        return InstallerSettings.model_fields["log_level"].default


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"verinstall {__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
    log_level: str = typer.Option(
        None,
        "--log-level",
        help="Logging level (DEBUG, INFO, WARNING, ERROR); default $VERINSTALL_LOG_LEVEL or INFO.",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Shortcut for --log-level DEBUG."),
    version: bool = typer.Option(
        False, "--version", callback=_version_callback, is_eager=True, help="Show version and exit."
    ),
) -> None:
    """Verified-download package installer."""
    if verbose:
        log_level = "DEBUG"
    configure_logging(log_level or _settings_log_level())


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
