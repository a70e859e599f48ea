"""Compiler backends for the package builder.

The builder drives the toolchain through the ``Compiler`` protocol.  The
default backend shells out to ``cargo`` with ``--offline --locked``, so a
build never reaches the network and never re-resolves the lock.
"""

from __future__ import annotations

import logging
import os
import subprocess
from collections.abc import Mapping
from pathlib import Path
from typing import Protocol

from reprobuild.errors import CompilationError

logger = logging.getLogger(__name__)

# Only these are taken from the invoking process, to locate the toolchain.
TOOLCHAIN_ENV_PASSTHROUGH: tuple[str, ...] = ("PATH", "HOME", "CARGO_HOME", "RUSTUP_HOME")


class Compiler(Protocol):
    """Builds release binaries and runs the workspace test suite."""

    def compile(
        self, workdir: Path, binaries: list[str], env: Mapping[str, str]
    ) -> dict[str, Path]:
        """Compile *binaries* in *workdir*; return name -> built file path."""
        ...

    def run_tests(self, workdir: Path, env: Mapping[str, str]) -> tuple[int, str]:
        """Run every workspace test; return (exit code, combined output)."""
        ...


class CargoCompiler:
    """``cargo``-backed compiler.

    Parameters
    ----------
    cargo:
        The cargo executable.
    profile:
        Build profile; binaries are read from ``target/<profile>/``.
    """

    def __init__(self, cargo: str = "cargo", *, profile: str = "release") -> None:
        self.cargo = cargo
        self.profile = profile

    def _env(self, env: Mapping[str, str], workdir: Path) -> dict[str, str]:
        full = {k: os.environ[k] for k in TOOLCHAIN_ENV_PASSTHROUGH if k in os.environ}
        full.update(env)
        # Strip the scratch path from debug info so output is path-independent.
        full["RUSTFLAGS"] = f"--remap-path-prefix={workdir}=/build"
        return full

    def _run(self, args: list[str], workdir: Path, env: Mapping[str, str]) -> tuple[int, str]:
        logger.info("Running: %s", " ".join(args))
        try:
            result = subprocess.run(
                args,
                cwd=workdir,
                env=self._env(env, workdir),
                capture_output=True,
                text=True,
            )
        except OSError as exc:
            raise CompilationError(f"Could not run {args[0]}: {exc}", returncode=127) from exc
        return result.returncode, result.stdout + result.stderr

    def compile(
        self, workdir: Path, binaries: list[str], env: Mapping[str, str]
    ) -> dict[str, Path]:
        args = [self.cargo, "build", "--offline", "--locked", "--profile", self.profile]
        for name in binaries:
            args += ["--bin", name]
        returncode, output = self._run(args, workdir, env)
        if returncode != 0:
            raise CompilationError(
                f"cargo build failed with exit code {returncode}:\n{output}",
                returncode=returncode,
                output=output,
            )
        out_dir = workdir / "target" / self.profile
        return {name: out_dir / name for name in binaries}

    def run_tests(self, workdir: Path, env: Mapping[str, str]) -> tuple[int, str]:
        return self._run(
            [self.cargo, "test", "--offline", "--locked", "--workspace"], workdir, env
        )
