"""Development environment models."""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, ConfigDict

from reprobuild.core.hasher import content_address


class ToolInstall(BaseModel):
    """A declared, versioned tool installed into the dev environment.

    Pinned the same way as a locked dependency so provisioning is
    reproducible rather than "whatever is latest on shell entry".
    """

    model_config = ConfigDict(frozen=True)

    name: str
    version: str
    features: list[str] = []

    @property
    def install_command(self) -> list[str]:
        cmd = ["cargo", "install", self.name, "--version", f"={self.version}", "--locked"]
        if self.features:
            cmd += ["--no-default-features", "--features", ",".join(self.features)]
        return cmd

    @property
    def hook_id(self) -> str:
        return content_address(self.model_dump(mode="json"))


class DevEnvironment(BaseModel):
    """An interactive environment sharing the package build inputs."""

    model_config = ConfigDict(frozen=True)

    name: str
    source_root: Path
    derivation_hash: str  # of the package build this environment mirrors
    dependencies: list[str] = []  # locked "name@version" pins
    packages: list[str] = []  # build tooling plus developer-only tools
    hooks: list[ToolInstall] = []
    env: dict[str, str] = {}
    state_dir: Path
