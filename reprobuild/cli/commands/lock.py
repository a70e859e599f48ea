"""``reprobuild lock`` — resolve the manifest into a pinned lock file."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from reprobuild.cli.commands._common import fail, load_settings
from reprobuild.core.lock_resolver import LockResolver, dump_lock, load_index, load_manifest
from reprobuild.errors import ReproBuildError

console = Console()


def lock_cmd(
    index: Path = typer.Option(..., "--index", "-i", help="Package index (JSON)."),
    workspace: Path = typer.Option(None, "--workspace", "-w", help="Workspace root."),
    output: Path = typer.Option(
        None, "--output", "-o", help="Where to write the lock (defaults to the configured lock file the build reads)."
    ),
) -> None:
    """Pin every transitive dependency to an exact version and checksum."""
    settings = load_settings(workspace)
    target = output or settings.lock_path

    try:
        manifest = load_manifest(settings.manifest_path)
        lock = LockResolver(load_index(index)).resolve(manifest)
        dump_lock(lock, target)
    except ReproBuildError as exc:
        raise fail(console, exc)

    table = Table(title=f"Lock for {manifest.name}")
    table.add_column("Package", style="cyan")
    table.add_column("Version", style="green")
    table.add_column("Checksum", style="dim")
    for pkg in lock.packages:
        table.add_row(pkg.name, pkg.version, pkg.checksum[:16] or "-")
    console.print(table)
    console.print(f"[bold green]Wrote[/bold green] {target}")
