"""Dependency manifest and lock models."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

LOCK_FORMAT_VERSION = 3


class BinaryTarget(BaseModel):
    """A named binary the workspace produces (e.g. the server or client)."""

    model_config = ConfigDict(frozen=True)

    name: str
    package: str = ""  # workspace member that owns the target


class Manifest(BaseModel):
    """Requested dependency ranges for the workspace.

    Ranges use PEP 440 specifier syntax (``">=1.2,<2"``); an empty string
    accepts any version.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    dependencies: dict[str, str] = {}
    binaries: list[BinaryTarget] = []

    @property
    def binary_names(self) -> list[str]:
        return [b.name for b in self.binaries]


class LockedDependency(BaseModel):
    """One pinned dependency: exact version plus content hash."""

    model_config = ConfigDict(frozen=True)

    name: str
    version: str
    checksum: str = ""  # sha256 hex of the fetched source archive
    source: str = ""
    dependencies: dict[str, str] = {}  # name -> range this package requires


class DependencyLock(BaseModel):
    """A fully pinned, transitive dependency lock."""

    model_config = ConfigDict(frozen=True)

    version: int = LOCK_FORMAT_VERSION
    packages: list[LockedDependency] = Field(default_factory=list)

    def get(self, name: str, version: str | None = None) -> LockedDependency | None:
        """Return the entry for *name*; with *version*, that exact entry."""
        for pkg in self.packages:
            if pkg.name == name and (version is None or pkg.version == version):
                return pkg
        return None

    def versions_of(self, name: str) -> list[LockedDependency]:
        """Every locked entry for *name*; a crate may be locked at several versions."""
        return [pkg for pkg in self.packages if pkg.name == name]

    @property
    def names(self) -> list[str]:
        return sorted(pkg.name for pkg in self.packages)
