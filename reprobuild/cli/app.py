"""Main Typer application — imports and registers all CLI commands.

Entry point: ``reprobuild`` (configured via pyproject.toml console_scripts).

Commands: build, image, run, develop, lock, version, show.
"""

from __future__ import annotations

import logging

import typer
from rich.logging import RichHandler

from reprobuild.cli.commands.build import build_cmd
from reprobuild.cli.commands.image import image_cmd
from reprobuild.cli.commands.info import show_cmd, version_cmd
from reprobuild.cli.commands.lock import lock_cmd
from reprobuild.cli.commands.run import develop_cmd, run_cmd
from reprobuild.config import settings

app = typer.Typer(
    name="reprobuild",
    help="reprobuild: reproducible build and packaging for a multi-binary Rust service.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)


@app.callback()
def _configure(
    log_level: str = typer.Option(
        None, "--log-level", help="Log level (defaults to REPROBUILD_LOG_LEVEL)."
    ),
) -> None:
    logging.basicConfig(
        level=(log_level or settings.log_level).upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
        force=True,
    )


# Register subcommands
app.command(name="build", help="Build the package and register its outputs.")(build_cmd)
app.command(name="image", help="Assemble the two-stage container image.")(image_cmd)
app.command(
    name="run",
    help="Run the default app binary.",
    context_settings={"allow_extra_args": True, "ignore_unknown_options": True},
)(run_cmd)
app.command(name="develop", help="Enter the development environment.")(develop_cmd)
app.command(name="lock", help="Resolve dependencies into a pinned lock.")(lock_cmd)
app.command(name="version", help="Print the VCS-derived package version.")(version_cmd)
app.command(name="show", help="Show the registered outputs.")(show_cmd)


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
