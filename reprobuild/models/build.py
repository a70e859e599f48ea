"""Build input, flag, and derivation models (all frozen)."""

from __future__ import annotations

from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict

from reprobuild.core.hasher import compute_derivation_hash, sha256_hex, canonical_json_bytes
from reprobuild.models.identity import PackageIdentity
from reprobuild.models.lock import DependencyLock, Manifest


class BuildFlags(BaseModel):
    """Policy toggles passed explicitly into the package builder.

    ``offline_query_check``
        Validate embedded queries against recorded metadata instead of a
        live database.
    ``run_tests``
        Execute the workspace test suite as part of packaging.  Disabling
        it skips every suite, not only the database-backed ones.
    """

    model_config = ConfigDict(frozen=True)

    offline_query_check: bool = True
    run_tests: bool = False


class SourceEntry(BaseModel):
    """A single file in the filtered source set."""

    model_config = ConfigDict(frozen=True)

    path: str  # POSIX path relative to the source root
    sha256: str
    executable: bool = False


class SourceSet(BaseModel):
    """The minimal file set that constitutes build input.

    ``root`` locates the files on disk but is not part of the cache key, so
    the same tree checked out in two places hashes identically.
    """

    model_config = ConfigDict(frozen=True)

    root: Path
    entries: list[SourceEntry] = []

    @property
    def paths(self) -> list[str]:
        return [e.path for e in self.entries]

    @property
    def cache_key(self) -> str:
        payload = [e.model_dump(mode="json") for e in self.entries]
        return sha256_hex(canonical_json_bytes(payload))


class BuildInput(BaseModel):
    """Everything a derivation depends on.

    Equal BuildInputs produce an equal ``derivation_hash`` and must produce
    bit-identical output.
    """

    model_config = ConfigDict(frozen=True)

    source: SourceSet
    lock: DependencyLock
    manifest: Manifest
    identity: PackageIdentity
    flags: BuildFlags = BuildFlags()
    binaries: list[str] = []

    def hash_inputs(self) -> dict[str, Any]:
        return {
            "source": self.source.cache_key,
            "lock": self.lock.model_dump(mode="json"),
            "manifest": self.manifest.model_dump(mode="json"),
            "identity": self.identity.model_dump(mode="json"),
            "flags": self.flags.model_dump(mode="json"),
            "binaries": sorted(self.binaries),
        }

    @property
    def derivation_hash(self) -> str:
        return compute_derivation_hash(self.hash_inputs())


class Derivation(BaseModel):
    """A realised build output registered in the store."""

    model_config = ConfigDict(frozen=True)

    derivation_hash: str
    identity: PackageIdentity
    out_path: Path
    binaries: dict[str, str] = {}  # binary name -> sha256 hex
    tests_ran: bool = False
    cached: bool = False

    def binary_path(self, name: str) -> Path:
        return self.out_path / "bin" / name
