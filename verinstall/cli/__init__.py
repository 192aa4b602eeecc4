"""verinstall CLI — Typer-based command-line interface.

Provides the ``verinstall`` command with subcommands for installing an
artifact, dry-run digest checks, and listing manifests.

All output uses Rich for formatted terminal display.
"""
