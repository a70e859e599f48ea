"""``reprobuild image`` — assemble the two-stage container image."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.panel import Panel

from reprobuild.cli.commands._common import fail, load_settings, steps_table
from reprobuild.core.container import render_dockerfile
from reprobuild.core.pipeline import Pipeline
from reprobuild.errors import ReproBuildError
from reprobuild.models.build import BuildFlags

console = Console()


def image_cmd(
    workspace: Path = typer.Option(None, "--workspace", "-w", help="Workspace root."),
    binary: str = typer.Option(None, "--binary", "-b", help="Binary to ship (defaults to the server)."),
    name: str = typer.Option(None, "--name", "-n", help="Package name."),
    version: str = typer.Option(None, "--version", help="Package version."),
    offline_check: bool = typer.Option(
        True,
        "--offline-check/--online-check",
        help="Validate embedded queries against recorded metadata instead of a live database.",
    ),
    run_tests: bool = typer.Option(
        False,
        "--run-tests/--no-run-tests",
        help="Run the workspace test suite in the builder stage.",
    ),
    dockerfile: Path = typer.Option(
        None, "--dockerfile", help="Also write the equivalent two-stage Dockerfile here."
    ),
) -> None:
    """Build the package and assemble the minimal runtime image."""
    pipeline = Pipeline(load_settings(workspace))
    flags = BuildFlags(offline_query_check=offline_check, run_tests=run_tests)

    try:
        identity = pipeline.resolve_identity(name, version)
        image = pipeline.build_image(identity, binary, flags)
    except ReproBuildError as exc:
        console.print(steps_table(pipeline.get_states()))
        raise fail(console, exc)

    runtime = image.runtime_stage
    if dockerfile is not None:
        dockerfile.write_text(
            render_dockerfile(runtime, builder_image=image.builder_stage.image, flags=flags),
            encoding="utf-8",
        )

    console.print(steps_table(pipeline.get_states()))
    console.print(
        Panel(
            "\n".join([
                f"[bold]Image:[/bold]       {image.image_digest}",
                f"[bold]Layer:[/bold]       {image.runtime_layer_digest}",
                f"[bold]Base:[/bold]        {runtime.base_image}",
                f"[bold]Packages:[/bold]    {', '.join(runtime.packages) or '-'}",
                f"[bold]Entrypoint:[/bold]  {runtime.workdir}/{runtime.entrypoint[0]}",
                f"[bold]Port:[/bold]        {runtime.exposed_port}",
            ]),
            title="[bold]Container Image[/bold]",
            border_style="green",
            padding=(1, 2),
        )
    )
