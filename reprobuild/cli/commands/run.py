"""``reprobuild run`` and ``reprobuild develop`` — use the registered outputs."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from reprobuild.cli.commands._common import fail, load_settings
from reprobuild.core.pipeline import Pipeline
from reprobuild.errors import ReproBuildError

console = Console()


def run_cmd(
    args: list[str] = typer.Argument(None, help="Arguments passed to the app."),
    workspace: Path = typer.Option(None, "--workspace", "-w", help="Workspace root."),
) -> None:
    """Run ``apps.default`` (``<package>/bin/<binary>``) directly."""
    pipeline = Pipeline(load_settings(workspace))
    try:
        code = pipeline.run_app(args or [])
    except ReproBuildError as exc:
        raise fail(console, exc)
    raise typer.Exit(code=code)


def develop_cmd(
    workspace: Path = typer.Option(None, "--workspace", "-w", help="Workspace root."),
    shell: str = typer.Option(None, "--shell", help="Shell to launch (defaults to $SHELL)."),
) -> None:
    """Provision the development environment and drop into a shell."""
    pipeline = Pipeline(load_settings(workspace))
    try:
        identity = pipeline.resolve_identity()
        env = pipeline.compose_environment(identity)
        console.print(f"[bold cyan]Entering {env.name}[/bold cyan]")
        console.print(f"[dim]packages: {', '.join(env.packages)}[/dim]")
        code = pipeline.composer.enter(env, shell=shell)
    except ReproBuildError as exc:
        raise fail(console, exc)
    raise typer.Exit(code=code)
