"""Helpers shared by CLI commands: settings, step table, error exit."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from reprobuild.config import BuildSettings
from reprobuild.errors import CompilationError, ReproBuildError
from reprobuild.models.steps import PIPELINE_STEPS, StepState

_STATE_ICONS: dict[StepState, str] = {
    StepState.PASSED: "[green]PASSED[/green]",
    StepState.FAILED: "[bold red]FAILED[/bold red]",
    StepState.RUNNING: "[yellow]RUNNING[/yellow]",
    StepState.NOT_STARTED: "[dim]NOT STARTED[/dim]",
    StepState.SKIPPED: "[magenta]SKIPPED[/magenta]",
}


def load_settings(workspace: Path | None) -> BuildSettings:
    """Settings with relative state paths anchored at *workspace*."""
    settings = BuildSettings()
    if workspace is None:
        return settings
    root = Path(workspace)

    def _anchor(p: Path) -> Path:
        return p if p.is_absolute() else root / p

    return settings.model_copy(update={
        "workspace_root": root,
        "state_dir": _anchor(settings.state_dir),
        "store_path": _anchor(settings.store_path),
        "registry_path": _anchor(settings.registry_path),
    })


def steps_table(states: dict[str, StepState]) -> Table:
    table = Table(title="Pipeline Steps", show_lines=False)
    table.add_column("#", justify="right", style="dim")
    table.add_column("Step", style="cyan")
    table.add_column("State", justify="center")
    for i, definition in enumerate(PIPELINE_STEPS, start=1):
        state = states.get(definition.step_id, StepState.NOT_STARTED)
        table.add_row(str(i), definition.display_name, _STATE_ICONS[state])
    return table


def fail(console: Console, exc: ReproBuildError) -> typer.Exit:
    """Print *exc* and return the Exit to raise."""
    console.print(f"[bold red]{type(exc).__name__}:[/bold red] {escape(str(exc))}")
    if isinstance(exc, CompilationError) and exc.output and exc.output not in str(exc):
        console.print(exc.output, markup=False, highlight=False)
    return typer.Exit(code=1)
