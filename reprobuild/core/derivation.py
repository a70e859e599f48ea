"""Package derivation builder.

Maps a ``BuildInput`` to a published store path holding ``bin/<name>`` for
each release binary.  The build is strictly sequential:

    verify lock -> derivation hash -> cache lookup -> materialize source
        -> query validation -> compile -> test gate -> publish

Equal inputs resolve to the same store path; a second build with the same
inputs reuses the verified output instead of rebuilding.
"""

from __future__ import annotations

import json
import logging
import os
import shutil
import tempfile
from pathlib import Path

from reprobuild.core.artifact_store import ContentAddressedStore
from reprobuild.core.compiler import Compiler
from reprobuild.core.hasher import canonical_json_bytes, file_sha256
from reprobuild.core.lock_resolver import verify_lock
from reprobuild.core.query_checker import QueryValidator, offline_env
from reprobuild.core.source_filter import materialize
from reprobuild.core.test_gate import TestGate
from reprobuild.errors import ArtifactIntegrityError, CompilationError
from reprobuild.models.build import BuildInput, Derivation

logger = logging.getLogger(__name__)

DERIVATION_RECORD = ".derivation.json"
BINARY_MODE = 0o555


def build_env(build_input: BuildInput) -> dict[str, str]:
    """The compiler environment, computed from the BuildInput alone."""
    env = {
        "SOURCE_DATE_EPOCH": "0",
        "CARGO_NET_OFFLINE": "true",
        "CARGO_INCREMENTAL": "0",
        "BUILD_NAME": build_input.identity.name,
        "BUILD_VERSION": build_input.identity.version,
        "LC_ALL": "C",
        "TZ": "UTC",
    }
    env.update(offline_env(build_input.flags))
    return env


def _normalize(path: Path, mode: int) -> None:
    path.chmod(mode)
    os.utime(path, (0, 0))


class PackageBuilder:
    """Builds release binaries for a ``BuildInput`` into the store.

    Parameters
    ----------
    store:
        Where outputs are published.
    compiler:
        The toolchain backend.
    validator:
        Embedded query validator; its mode follows
        ``BuildInput.flags.offline_query_check``.
    """

    def __init__(
        self,
        store: ContentAddressedStore,
        compiler: Compiler,
        validator: QueryValidator | None = None,
    ) -> None:
        self.store = store
        self.compiler = compiler
        self.validator = validator or QueryValidator()
        self.test_gate = TestGate(compiler)

    def binaries_for(self, build_input: BuildInput) -> list[str]:
        return sorted(build_input.binaries or build_input.manifest.binary_names)

    def build(self, build_input: BuildInput) -> Derivation:
        """Build (or reuse) the derivation for *build_input*."""
        identity = build_input.identity
        binaries = self.binaries_for(build_input)
        if not binaries:
            raise CompilationError(f"{identity.name} declares no binary targets")

        # Lock mismatches abort before anything is compiled.
        verify_lock(build_input.manifest, build_input.lock)

        drv_hash = build_input.derivation_hash
        out_path = self.store.output_path(drv_hash, identity)
        logger.info("Derivation %s for %s -> %s", drv_hash[:12], identity.label, out_path)

        if self.store.has_output(out_path):
            return self._reuse(out_path)

        with self.store.staging() as staged, tempfile.TemporaryDirectory(
            prefix="reprobuild-build-"
        ) as scratch:
            workdir = materialize(build_input.source, Path(scratch) / "src")
            env = build_env(build_input)

            checked = self.validator.validate(build_input.source, build_input.flags, workdir)
            logger.info("Validated %d embedded queries", checked)

            built = self.compiler.compile(workdir, binaries, env)
            tests_ran = self.test_gate.run(build_input.flags, workdir, env)

            out = staged / "out"
            bin_dir = out / "bin"
            bin_dir.mkdir(parents=True)
            digests: dict[str, str] = {}
            for name in binaries:
                produced = built.get(name)
                if produced is None or not Path(produced).is_file():
                    raise CompilationError(f"Compiler did not produce binary {name!r}")
                dest = bin_dir / name
                shutil.copyfile(produced, dest)
                _normalize(dest, BINARY_MODE)
                digests[name] = file_sha256(dest)

            record = {
                "derivation_hash": drv_hash,
                "identity": identity.model_dump(mode="json"),
                "binaries": digests,
                "tests_ran": tests_ran,
            }
            (out / DERIVATION_RECORD).write_bytes(canonical_json_bytes(record))
            _normalize(out / DERIVATION_RECORD, 0o444)
            _normalize(bin_dir, 0o755)
            _normalize(out, 0o755)

            self.store.publish(out, out_path)

        return Derivation(
            derivation_hash=drv_hash,
            identity=identity,
            out_path=out_path,
            binaries=digests,
            tests_ran=tests_ran,
        )

    def _reuse(self, out_path: Path) -> Derivation:
        """Return the already-published output after re-verifying its binaries."""
        try:
            record = json.loads((out_path / DERIVATION_RECORD).read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise ArtifactIntegrityError(
                f"Cached output {out_path} has no readable {DERIVATION_RECORD}: {exc}"
            ) from exc
        derivation = Derivation(out_path=out_path, cached=True, **record)
        self.store.verify_output(out_path, derivation.binaries)
        logger.info("Reusing cached output %s", out_path)
        return derivation
