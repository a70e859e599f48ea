"""reprobuild CLI — Typer-based command-line interface.

Provides the ``reprobuild`` command with subcommands for building the
package, running the app, entering the development environment,
assembling the container image, resolving the lock, and inspecting
outputs.

All output uses Rich for formatted terminal display.
"""
