"""Operational configuration — env-driven via pydantic-settings.

Reads from a .env file and REPROBUILD_* environment variables.

The two build policy flags (offline query validation, test execution) are
deliberately absent here: they are fields of ``BuildFlags`` and are passed
explicitly into the package builder, never picked up from the process
environment.
"""

from __future__ import annotations

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

from reprobuild.models.environment import ToolInstall
from reprobuild.models.image import DEFAULT_BASE_IMAGE, DEFAULT_BUILDER_IMAGE, DEFAULT_PORT


class BuildSettings(BaseSettings):
    """Pipeline settings with environment variable overrides.

    Examples
    --------
    Override via environment::

        export REPROBUILD_LOG_LEVEL=DEBUG
        export REPROBUILD_STORE_PATH=/var/cache/reprobuild/store
        export REPROBUILD_DATABASE_URL=postgres://localhost:5432/vtn

    Or via .env file::

        REPROBUILD_PACKAGE_NAME=openleadr-rs
        REPROBUILD_DEFAULT_BINARY=openadr-vtn
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="REPROBUILD_",
        env_file_encoding="utf-8",
    )

    log_level: str = "INFO"

    # Workspace layout
    workspace_root: Path = Path(".")
    manifest_file: str = "reprobuild.toml"
    lock_file: str = "Cargo.lock"
    state_dir: Path = Path(".reprobuild")
    store_path: Path = Path(".reprobuild/store")
    registry_path: Path = Path(".reprobuild/registry.json")

    # Package identity and targets
    package_name: str = "openleadr-rs"
    binaries: list[str] = ["openadr-vtn", "openadr-client"]
    default_binary: str = "openadr-vtn"

    # Query validation (online mode only)
    database_url: str = "postgres://localhost:5432/openadr"
    database_connect_timeout: float = 2.0

    # Container image
    builder_image: str = DEFAULT_BUILDER_IMAGE
    base_image: str = DEFAULT_BASE_IMAGE
    runtime_packages: list[str] = ["ca-certificates", "libssl3"]
    container_port: int = DEFAULT_PORT

    # Development environment
    build_tools: list[str] = ["cargo", "rustc"]
    dev_packages: list[str] = ["openssl.dev", "pkg-config"]
    hook_tool: ToolInstall = ToolInstall(
        name="sqlx-cli",
        version="0.7.4",
        features=["rustls", "postgres"],
    )

    @property
    def manifest_path(self) -> Path:
        return self.workspace_root / self.manifest_file

    @property
    def lock_path(self) -> Path:
        return self.workspace_root / self.lock_file


# Module-level singleton: import as `from reprobuild.config import settings`
settings = BuildSettings()
