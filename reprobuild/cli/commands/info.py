"""``reprobuild version`` and ``reprobuild show`` — inspect identity and outputs."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from reprobuild.cli.commands._common import fail, load_settings
from reprobuild.core.registry import OutputRegistry
from reprobuild.core.version_resolver import read_revision_state, resolve_version
from reprobuild.errors import ReproBuildError

console = Console()


def version_cmd(
    workspace: Path = typer.Option(None, "--workspace", "-w", help="Workspace root."),
) -> None:
    """Print the version string derived from the working tree."""
    settings = load_settings(workspace)
    console.print(resolve_version(read_revision_state(settings.workspace_root)), markup=False)


def show_cmd(
    workspace: Path = typer.Option(None, "--workspace", "-w", help="Workspace root."),
) -> None:
    """Show the registered outputs of the last build."""
    settings = load_settings(workspace)
    try:
        registry = OutputRegistry.load(settings.registry_path)
    except ReproBuildError as exc:
        raise fail(console, exc)

    table = Table(title="Outputs")
    table.add_column("Key", style="cyan", no_wrap=True)
    table.add_column("Kind")
    table.add_column("Path")
    table.add_column("Program", style="green")
    table.add_column("Derivation", style="dim")
    for key, entry in registry.items():
        table.add_row(
            key,
            entry.kind.value,
            str(entry.path),
            entry.program or "-",
            entry.derivation_hash[:12],
        )
    console.print(table)
