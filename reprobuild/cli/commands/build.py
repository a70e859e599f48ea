"""``reprobuild build`` — build the package and publish the output registry.

Runs source filtering, lock verification, compilation and the test gate,
then registers ``packages.default``, ``devShells.default`` and
``apps.default``.
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.panel import Panel

from reprobuild.cli.commands._common import fail, load_settings, steps_table
from reprobuild.core.pipeline import Pipeline
from reprobuild.errors import ReproBuildError
from reprobuild.models.build import BuildFlags
from reprobuild.models.registry import APP_KEY, PACKAGE_KEY

console = Console()


def build_cmd(
    workspace: Path = typer.Option(
        None, "--workspace", "-w", help="Workspace root (defaults to REPROBUILD_WORKSPACE_ROOT)."
    ),
    name: str = typer.Option(None, "--name", "-n", help="Package name."),
    version: str = typer.Option(
        None, "--version", help="Package version (defaults to the VCS-derived version)."
    ),
    offline_check: bool = typer.Option(
        True,
        "--offline-check/--online-check",
        help="Validate embedded queries against recorded metadata instead of a live database.",
    ),
    run_tests: bool = typer.Option(
        False,
        "--run-tests/--no-run-tests",
        help="Run the workspace test suite as part of packaging.",
    ),
    binary: str = typer.Option(None, "--binary", "-b", help="Binary registered as the app."),
) -> None:
    """Build the package and register its outputs."""
    pipeline = Pipeline(load_settings(workspace))
    flags = BuildFlags(offline_query_check=offline_check, run_tests=run_tests)

    try:
        identity = pipeline.resolve_identity(name, version)
        console.print(f"[bold cyan]Building {identity.label}...[/bold cyan]")
        registry = pipeline.evaluate(identity, flags, binary)
    except ReproBuildError as exc:
        console.print(steps_table(pipeline.get_states()))
        raise fail(console, exc)

    console.print(steps_table(pipeline.get_states()))
    console.print()
    console.print(
        Panel(
            "\n".join([
                "[bold green]Build complete![/bold green]",
                "",
                f"[bold]Package:[/bold]  {identity.label}",
                f"[bold]Output:[/bold]   {registry[PACKAGE_KEY].path}",
                f"[bold]App:[/bold]      {registry[APP_KEY].program}",
                f"[bold]Flags:[/bold]    offline_query_check={flags.offline_query_check} "
                f"run_tests={flags.run_tests}",
            ]),
            title="[bold]reprobuild[/bold]",
            border_style="green",
            padding=(1, 2),
        )
    )
    # Print the output path plainly for scripting
    console.print(registry[PACKAGE_KEY].path, markup=False, highlight=False)
