"""Multi-stage container assembly.

Stage 1 (builder) realises the package derivation.  Stage 2 (runtime)
starts from a minimal base image with declared OS packages and receives
exactly one file from stage 1: the release binary, through the
``CopyContract``.  Nothing else from the builder stage's filesystem can
reach the runtime layer, and ``verify_runtime_layer`` checks that.
"""

from __future__ import annotations

import io
import logging
import tarfile
from pathlib import Path, PurePosixPath
from typing import Any

from reprobuild.core.artifact_store import ContentAddressedStore
from reprobuild.core.derivation import PackageBuilder
from reprobuild.core.hasher import canonical_json_bytes
from reprobuild.errors import ImageAssemblyError
from reprobuild.models.build import BuildFlags, BuildInput
from reprobuild.models.image import (
    APP_WORKDIR,
    DEFAULT_BASE_IMAGE,
    DEFAULT_BUILDER_IMAGE,
    DEFAULT_PORT,
    BuilderStage,
    ContainerImage,
    CopyContract,
    RuntimeStage,
)

logger = logging.getLogger(__name__)

OCI_MANIFEST_MEDIA_TYPE = "application/vnd.oci.image.manifest.v1+json"
OCI_CONFIG_MEDIA_TYPE = "application/vnd.oci.image.config.v1+json"
OCI_LAYER_MEDIA_TYPE = "application/vnd.oci.image.layer.v1.tar"


# ---------------------------------------------------------------------------
# Runtime layer
# ---------------------------------------------------------------------------


def _tar_info(name: str, *, mode: int, kind: bytes, size: int = 0) -> tarfile.TarInfo:
    info = tarfile.TarInfo(name)
    info.type = kind
    info.mode = mode
    info.size = size
    info.mtime = 0
    info.uid = info.gid = 0
    info.uname = info.gname = ""
    return info


def build_runtime_layer(binary: Path, runtime: RuntimeStage) -> bytes:
    """Tar the single copied binary into a deterministic layer.

    Entries are the workdir directory and the binary; mtimes, owners and
    modes are fixed so equal binaries give byte-identical layers.
    """
    workdir = runtime.workdir.relative_to("/").as_posix()
    dest = runtime.copy_contract.destination.relative_to("/").as_posix()
    data = Path(binary).read_bytes()

    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w", format=tarfile.USTAR_FORMAT) as tar:
        tar.addfile(_tar_info(f"{workdir}/", mode=0o755, kind=tarfile.DIRTYPE))
        tar.addfile(
            _tar_info(dest, mode=0o555, kind=tarfile.REGTYPE, size=len(data)),
            io.BytesIO(data),
        )
    return buf.getvalue()


def verify_runtime_layer(layer: bytes, runtime: RuntimeStage) -> list[str]:
    """Return the layer's entry names, raising if anything beyond the contract is present."""
    workdir = runtime.workdir.relative_to("/").as_posix()
    allowed = {workdir, runtime.copy_contract.destination.relative_to("/").as_posix()}
    with tarfile.open(fileobj=io.BytesIO(layer), mode="r:") as tar:
        names = [m.name.rstrip("/") for m in tar.getmembers()]
    extra = sorted(set(names) - allowed)
    if extra:
        raise ImageAssemblyError(
            f"Runtime layer contains entries outside the copy contract: {', '.join(extra)}"
        )
    return names


# ---------------------------------------------------------------------------
# Image config / Dockerfile rendering
# ---------------------------------------------------------------------------


def image_config(runtime: RuntimeStage, layer_digest: str, labels: dict[str, str]) -> dict[str, Any]:
    """OCI image config for the runtime stage (no timestamps)."""
    return {
        "architecture": "amd64",
        "os": "linux",
        "config": {
            "Entrypoint": runtime.entrypoint,
            "Cmd": [],
            "WorkingDir": str(runtime.workdir),
            "ExposedPorts": {f"{runtime.exposed_port}/tcp": {}},
            "Labels": dict(sorted(labels.items())),
        },
        "rootfs": {"type": "layers", "diff_ids": [layer_digest]},
    }


def render_dockerfile(
    runtime: RuntimeStage,
    *,
    builder_image: str = DEFAULT_BUILDER_IMAGE,
    flags: BuildFlags | None = None,
) -> str:
    """Render the equivalent two-stage Dockerfile."""
    flags = flags or BuildFlags()
    binary = runtime.copy_contract.destination.name
    offline = "true" if flags.offline_query_check else "false"
    lines = [
        f"FROM {builder_image} AS builder",
        "WORKDIR /build",
        "COPY . .",
        f"ENV SQLX_OFFLINE={offline}",
        f"RUN cargo build --release --offline --locked --bin {binary}",
    ]
    if flags.run_tests:
        lines.append("RUN cargo test --offline --locked --workspace")
    lines += ["", f"FROM {runtime.base_image}"]
    if runtime.packages:
        lines.append(
            "RUN apt-get update && apt-get install -y --no-install-recommends "
            + " ".join(runtime.packages)
            + " && rm -rf /var/lib/apt/lists/*"
        )
    lines += [
        f"WORKDIR {runtime.workdir}",
        f"COPY --from=builder /build/target/release/{binary} {runtime.copy_contract.destination}",
        f"EXPOSE {runtime.exposed_port}",
        f'ENTRYPOINT ["{runtime.entrypoint[0]}"]',
    ]
    return "\n".join(lines) + "\n"


# ---------------------------------------------------------------------------
# Assembler
# ---------------------------------------------------------------------------


class ContainerAssembler:
    """Assembles a two-stage image for one binary of a package.

    Parameters
    ----------
    builder:
        Realises the builder stage.
    store:
        Where the runtime layer, config and manifest blobs are stored.
    """

    def __init__(
        self,
        builder: PackageBuilder,
        store: ContentAddressedStore,
        *,
        builder_image: str = DEFAULT_BUILDER_IMAGE,
        base_image: str = DEFAULT_BASE_IMAGE,
        runtime_packages: list[str] | None = None,
        port: int = DEFAULT_PORT,
    ) -> None:
        self.builder = builder
        self.store = store
        self.builder_image = builder_image
        self.base_image = base_image
        self.runtime_packages = sorted(runtime_packages or [])
        self.port = port

    def plan_runtime(self, binary: str) -> RuntimeStage:
        return RuntimeStage(
            base_image=self.base_image,
            packages=self.runtime_packages,
            workdir=APP_WORKDIR,
            copy_contract=CopyContract(
                source=f"bin/{binary}",
                destination=APP_WORKDIR / PurePosixPath(binary),
            ),
            exposed_port=self.port,
        )

    def assemble(self, build_input: BuildInput, binary: str) -> ContainerImage:
        """Build stage 1, copy the binary across, and store stage 2."""
        # Stage 1
        derivation = self.builder.build(build_input)
        builder_stage = BuilderStage(
            image=self.builder_image,
            derivation_hash=derivation.derivation_hash,
            out_path=derivation.out_path,
        )

        # Copy contract
        runtime = self.plan_runtime(binary)
        source = builder_stage.out_path / runtime.copy_contract.source
        if not source.is_file():
            raise ImageAssemblyError(
                f"Copy step failed: {runtime.copy_contract.source} not found in builder "
                f"stage output {builder_stage.out_path}"
            )

        # Stage 2
        layer = build_runtime_layer(source, runtime)
        verify_runtime_layer(layer, runtime)
        layer_ref = self.store.store(layer, name=f"{binary}.layer.tar", artifact_type="image-layer")

        labels = {
            "org.opencontainers.image.title": build_input.identity.name,
            "org.opencontainers.image.version": build_input.identity.version,
            "org.opencontainers.image.base.name": runtime.base_image,
            "dev.reprobuild.derivation": derivation.derivation_hash,
            "dev.reprobuild.runtime-packages": ",".join(runtime.packages),
        }
        config = canonical_json_bytes(image_config(runtime, layer_ref.content_address, labels))
        config_ref = self.store.store(config, name=f"{binary}.config.json", artifact_type="image-config")

        manifest = {
            "schemaVersion": 2,
            "mediaType": OCI_MANIFEST_MEDIA_TYPE,
            "config": {
                "mediaType": OCI_CONFIG_MEDIA_TYPE,
                "digest": config_ref.content_address,
                "size": config_ref.size_bytes,
            },
            "layers": [
                {
                    "mediaType": OCI_LAYER_MEDIA_TYPE,
                    "digest": layer_ref.content_address,
                    "size": layer_ref.size_bytes,
                }
            ],
        }
        manifest_ref = self.store.store(
            canonical_json_bytes(manifest), name=f"{binary}.manifest.json", artifact_type="image-manifest"
        )

        logger.info(
            "Assembled image for %s: layer=%s image=%s",
            binary, layer_ref.content_address[:19], manifest_ref.content_address[:19],
        )
        return ContainerImage(
            builder_stage=builder_stage,
            runtime_stage=runtime,
            runtime_layer_digest=layer_ref.content_address,
            config_digest=config_ref.content_address,
            image_digest=manifest_ref.content_address,
        )
