"""Two-stage container image models.

The builder stage and the runtime stage are disjoint: the only thing that
crosses between them is the ``CopyContract``.
"""

from __future__ import annotations

from pathlib import Path, PurePosixPath

from pydantic import BaseModel, ConfigDict

APP_WORKDIR = PurePosixPath("/app")
DEFAULT_BASE_IMAGE = "debian:bookworm-slim"
DEFAULT_BUILDER_IMAGE = "rust:1-bookworm"
DEFAULT_PORT = 3000


class CopyContract(BaseModel):
    """The single path allowed to cross from the builder to the runtime stage."""

    model_config = ConfigDict(frozen=True)

    source: str  # relative to the builder stage's output, e.g. "bin/svc-server"
    destination: PurePosixPath


class BuilderStage(BaseModel):
    """Compile stage: toolchain, full source, intermediate artifacts.

    Only ``out_path`` (a published store path) is visible to the runtime
    stage, and only through the copy contract.
    """

    model_config = ConfigDict(frozen=True)

    image: str = DEFAULT_BUILDER_IMAGE
    derivation_hash: str
    out_path: Path


class RuntimeStage(BaseModel):
    """Minimal runtime stage: base image, OS packages, one binary."""

    model_config = ConfigDict(frozen=True)

    base_image: str = DEFAULT_BASE_IMAGE
    packages: list[str] = []
    workdir: PurePosixPath = APP_WORKDIR
    copy_contract: CopyContract
    exposed_port: int = DEFAULT_PORT

    @property
    def entrypoint(self) -> list[str]:
        return [f"./{self.copy_contract.destination.name}"]


class ContainerImage(BaseModel):
    """An assembled image: runtime layer plus image config, content-addressed."""

    model_config = ConfigDict(frozen=True)

    builder_stage: BuilderStage
    runtime_stage: RuntimeStage
    runtime_layer_digest: str  # "sha256:<hex>"
    config_digest: str
    image_digest: str
