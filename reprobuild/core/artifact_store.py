"""Content-addressed, immutable output store.

Two kinds of entries live here:

- blobs (image layers, image configs, manifests) under
  ``{base}/blobs/{sha256[0:2]}/{sha256[2:4]}/{sha256}.dat``
- derivation outputs under ``{base}/{hash[:32]}-{name}-{version}/``

No delete method — entries are immutable once stored.  Derivation outputs
are staged in a sibling temp directory and published with an atomic
rename, so an aborted build never leaves a partial output at a final path.
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from reprobuild.core.hasher import file_sha256, sha256_hex
from reprobuild.errors import ArtifactIntegrityError
from reprobuild.models.artifacts import ArtifactRef
from reprobuild.models.identity import PackageIdentity

logger = logging.getLogger(__name__)

_STAGING_PREFIX = ".staging-"
OUTPUT_HASH_LENGTH = 32


class ContentAddressedStore:
    """SHA-256 keyed, immutable store for blobs and derivation outputs.

    Storing the same content twice is a no-op (idempotent).  There is no
    update or delete.

    Parameters
    ----------
    base_path:
        Root directory for the store.
    """

    def __init__(self, base_path: Path) -> None:
        self._base = Path(base_path)
        self._base.mkdir(parents=True, exist_ok=True)

    @property
    def base_path(self) -> Path:
        return self._base

    @staticmethod
    def _extract_digest(content_address: str) -> str:
        """Strip the ``sha256:`` prefix from a content address, if present."""
        return content_address.removeprefix("sha256:")

    def _blob_path(self, sha256_digest: str) -> Path:
        return (
            self._base / "blobs" / sha256_digest[:2] / sha256_digest[2:4]
            / f"{sha256_digest}.dat"
        )

    # ------------------------------------------------------------------
    # Blobs
    # ------------------------------------------------------------------

    def store(self, data: bytes, *, name: str = "", artifact_type: str = "generic") -> ArtifactRef:
        """Store data and return its content-addressed reference.

        If the content already exists, verifies integrity and returns the
        existing reference without overwriting.
        """
        digest = sha256_hex(data)
        path = self._blob_path(digest)

        if path.exists():
            if not self.verify(digest):
                raise ArtifactIntegrityError(
                    f"Existing artifact at {digest} failed integrity check"
                )
        else:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp = path.with_name(f"{_STAGING_PREFIX}{path.name}")
            tmp.write_bytes(data)
            os.replace(tmp, path)

        return ArtifactRef(
            name=name or digest[:16],
            content_address=f"sha256:{digest}",
            artifact_type=artifact_type,
            size_bytes=len(data),
        )

    def retrieve(self, content_address: str) -> bytes:
        """Retrieve blob bytes by ``sha256:<hex>`` or bare hex digest."""
        path = self._blob_path(self._extract_digest(content_address))
        if not path.exists():
            raise FileNotFoundError(f"Artifact not found: {content_address}")
        return path.read_bytes()

    def exists(self, content_address: str) -> bool:
        return self._blob_path(self._extract_digest(content_address)).exists()

    def verify(self, content_address: str) -> bool:
        """Re-hash stored data and compare against the content address."""
        digest = self._extract_digest(content_address)
        path = self._blob_path(digest)
        if not path.exists():
            return False
        return sha256_hex(path.read_bytes()) == digest

    # ------------------------------------------------------------------
    # Derivation outputs
    # ------------------------------------------------------------------

    def output_path(self, derivation_hash: str, identity: PackageIdentity) -> Path:
        """Deterministic final path for a derivation's output."""
        return self._base / f"{derivation_hash[:OUTPUT_HASH_LENGTH]}-{identity.label}"

    def has_output(self, out_path: Path) -> bool:
        return Path(out_path).is_dir()

    @contextmanager
    def staging(self) -> Iterator[Path]:
        """Yield a private staging directory inside the store.

        The directory is removed on exit whether or not it was published.
        """
        tmp = Path(tempfile.mkdtemp(prefix=_STAGING_PREFIX, dir=self._base))
        try:
            yield tmp
        finally:
            shutil.rmtree(tmp, ignore_errors=True)

    def publish(self, staged: Path, out_path: Path) -> Path:
        """Atomically move *staged* to *out_path*.

        If another build published the same derivation first, the existing
        output wins and *staged* is left for the caller to discard.
        """
        out_path = Path(out_path)
        if out_path.exists():
            logger.info("Output already published at %s", out_path)
            return out_path
        try:
            os.rename(staged, out_path)
        except OSError:
            if not out_path.exists():
                raise
        logger.info("Published %s", out_path)
        return out_path

    def verify_output(self, out_path: Path, binaries: dict[str, str]) -> None:
        """Re-hash each ``bin/<name>`` under *out_path* against *binaries*."""
        for name, expected in binaries.items():
            path = Path(out_path) / "bin" / name
            if not path.is_file() or file_sha256(path) != expected:
                raise ArtifactIntegrityError(
                    f"Output {out_path} failed integrity check for bin/{name}"
                )
