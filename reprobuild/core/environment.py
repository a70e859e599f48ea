"""Development environment composer.

The dev environment shares the package build's dependency set and adds
developer-only tooling.  Its provisioning hook (installing the migration
CLI) is a declared, pinned ``ToolInstall``: it runs once per hook identity,
and re-entering the environment does not re-run it.
"""

from __future__ import annotations

import logging
import os
import subprocess
from collections.abc import Callable, Sequence
from pathlib import Path

from reprobuild.core.compiler import TOOLCHAIN_ENV_PASSTHROUGH
from reprobuild.core.derivation import build_env
from reprobuild.core.lock_resolver import verify_lock
from reprobuild.errors import ProvisioningError
from reprobuild.models.build import BuildInput
from reprobuild.models.environment import DevEnvironment, ToolInstall

logger = logging.getLogger(__name__)

# (argv, env, cwd) -> exit code
Runner = Callable[[Sequence[str], dict[str, str], Path], int]


def _subprocess_runner(argv: Sequence[str], env: dict[str, str], cwd: Path) -> int:
    return subprocess.run(list(argv), env=env, cwd=cwd).returncode


class EnvironmentComposer:
    """Composes a ``DevEnvironment`` from the package's build inputs.

    Parameters
    ----------
    build_tools:
        Tooling the package build itself uses.
    dev_packages:
        Extra developer-only packages (TLS library headers, compiler
        discovery helper).
    hooks:
        Declared tool installs run once on first entry.
    state_dir:
        Where hook completion markers are kept.
    """

    def __init__(
        self,
        *,
        build_tools: list[str],
        dev_packages: list[str],
        hooks: list[ToolInstall],
        state_dir: Path,
    ) -> None:
        self.build_tools = list(build_tools)
        self.dev_packages = list(dev_packages)
        self.hooks = list(hooks)
        self.state_dir = Path(state_dir)

    def compose(self, build_input: BuildInput) -> DevEnvironment:
        """Return the environment for *build_input*.

        The lock is verified exactly as the package build does it, so the
        shell can never drift from what gets packaged.
        """
        verify_lock(build_input.manifest, build_input.lock)
        env = build_env(build_input)
        env["REPROBUILD_DEV_SHELL"] = "1"
        return DevEnvironment(
            name=f"{build_input.identity.name}-dev",
            source_root=build_input.source.root,
            derivation_hash=build_input.derivation_hash,
            dependencies=[f"{p.name}@{p.version}" for p in build_input.lock.packages],
            packages=sorted(set(self.build_tools) | set(self.dev_packages)),
            hooks=self.hooks,
            env=env,
            state_dir=self.state_dir / "devshell",
        )

    # ------------------------------------------------------------------
    # Provisioning
    # ------------------------------------------------------------------

    def _marker(self, env: DevEnvironment, hook: ToolInstall) -> Path:
        digest = hook.hook_id.removeprefix("sha256:")
        return env.state_dir / "hooks" / f"{hook.name}-{digest[:16]}.done"

    def _process_env(self, env: DevEnvironment) -> dict[str, str]:
        full = {k: os.environ[k] for k in TOOLCHAIN_ENV_PASSTHROUGH if k in os.environ}
        full.update(env.env)
        return full

    def provision(self, env: DevEnvironment, runner: Runner = _subprocess_runner) -> list[str]:
        """Run every hook not yet completed; return the names that ran."""
        ran: list[str] = []
        for hook in env.hooks:
            marker = self._marker(env, hook)
            if marker.exists():
                logger.debug("Hook %s@%s already provisioned", hook.name, hook.version)
                continue
            logger.info("Provisioning %s@%s", hook.name, hook.version)
            code = runner(hook.install_command, self._process_env(env), env.source_root)
            if code != 0:
                raise ProvisioningError(
                    f"Installing {hook.name}@{hook.version} failed with exit code {code}"
                )
            marker.parent.mkdir(parents=True, exist_ok=True)
            marker.write_text(hook.hook_id + "\n", encoding="utf-8")
            ran.append(hook.name)
        return ran

    def enter(
        self,
        env: DevEnvironment,
        runner: Runner = _subprocess_runner,
        shell: str | None = None,
    ) -> int:
        """Provision *env*, then run an interactive shell inside it."""
        self.provision(env, runner)
        argv = [shell or os.environ.get("SHELL", "/bin/sh")]
        logger.info("Entering %s (%s)", env.name, argv[0])
        return runner(argv, self._process_env(env), env.source_root)
