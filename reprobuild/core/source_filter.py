"""Source filter — computes the minimal build-input file set.

Prior build outputs, packaging/environment metadata, local machine config
and VCS state are excluded so that changing them never invalidates the
build cache.  Files are keyed by relative path, content hash and executable
bit only; timestamps and ownership never enter the cache key.
"""

from __future__ import annotations

import fnmatch
import hashlib
import logging
import os
import stat
from collections.abc import Iterable
from pathlib import Path

from reprobuild.core.hasher import file_sha256
from reprobuild.errors import SourceChangedError
from reprobuild.models.build import SourceEntry, SourceSet

logger = logging.getLogger(__name__)

# Prior build output directories.  Any of these may be missing.
BUILD_OUTPUT_PATTERNS: frozenset[str] = frozenset({"result", "result-*", "target"})

# Packaging and environment metadata that describes the build rather than
# being an input to it.  The resolved lock is hashed through the BuildInput,
# never through the file set.
ENVIRONMENT_METADATA_PATTERNS: frozenset[str] = frozenset({
    "flake.nix",
    "flake.lock",
    "default.nix",
    "shell.nix",
    ".envrc",
    ".direnv",
    "Dockerfile",
    ".dockerignore",
    "reprobuild.toml",
    "reprobuild.lock.json",
})

LOCAL_CONFIG_PATTERNS: frozenset[str] = frozenset({".env", ".vscode", ".idea"})

VCS_AND_STATE_PATTERNS: frozenset[str] = frozenset({".git", ".reprobuild"})

# Anchored at the workspace root: ``target`` excludes ``./target`` only.
DEFAULT_EXCLUSIONS: frozenset[str] = (
    BUILD_OUTPUT_PATTERNS
    | ENVIRONMENT_METADATA_PATTERNS
    | LOCAL_CONFIG_PATTERNS
    | VCS_AND_STATE_PATTERNS
)

# Editor debris, excluded at any depth.
ANYWHERE_EXCLUSIONS: frozenset[str] = frozenset({"*.swp", ".DS_Store"})

_COPY_CHUNK = 65536


class SourceFilter:
    """Walks a root directory and returns the filtered ``SourceSet``.

    Parameters
    ----------
    root:
        Directory whose contents form the build input.
    exclusions:
        Glob patterns anchored at *root*.  A pattern excludes the relative
        POSIX path it matches and everything below it, so ``target`` prunes
        ``./target`` but keeps ``src/target/mod.rs``.
    anywhere:
        Glob patterns matched against every single path component.
    """

    def __init__(
        self,
        root: Path,
        exclusions: Iterable[str] = DEFAULT_EXCLUSIONS,
        anywhere: Iterable[str] = ANYWHERE_EXCLUSIONS,
    ) -> None:
        self.root = Path(root).resolve()
        self.exclusions = frozenset(exclusions)
        self.anywhere = frozenset(anywhere)

    def is_excluded(self, rel_path: str) -> bool:
        """Return True if *rel_path* (POSIX, relative to root) is excluded."""
        parts = rel_path.split("/")
        prefixes = ["/".join(parts[:i]) for i in range(1, len(parts) + 1)]
        for pattern in self.exclusions:
            if any(fnmatch.fnmatchcase(prefix, pattern) for prefix in prefixes):
                return True
        for pattern in self.anywhere:
            if any(fnmatch.fnmatchcase(part, pattern) for part in parts):
                return True
        return False

    def collect(self) -> SourceSet:
        """Return the sorted, content-hashed file set under ``root``."""
        if not self.root.is_dir():
            raise FileNotFoundError(f"Source root not found: {self.root}")

        entries: list[SourceEntry] = []
        for dirpath, dirnames, filenames in os.walk(self.root):
            base = Path(dirpath)
            rel_dir = base.relative_to(self.root).as_posix()
            prefix = "" if rel_dir == "." else f"{rel_dir}/"

            # Prune excluded directories in place so os.walk never descends.
            dirnames[:] = sorted(
                d for d in dirnames if not self.is_excluded(f"{prefix}{d}")
            )

            for filename in sorted(filenames):
                rel = f"{prefix}{filename}"
                if self.is_excluded(rel):
                    continue
                path = base / filename
                if not path.is_file():
                    continue
                mode = path.stat().st_mode
                entries.append(
                    SourceEntry(
                        path=rel,
                        sha256=file_sha256(path),
                        executable=bool(mode & stat.S_IXUSR),
                    )
                )

        entries.sort(key=lambda e: e.path)
        source = SourceSet(root=self.root, entries=entries)
        logger.info(
            "Source filter: %d files under %s, cache_key=%s",
            len(entries), self.root, source.cache_key[:12],
        )
        return source


def materialize(source: SourceSet, dest: Path) -> Path:
    """Copy exactly the files in *source* into *dest*.

    Each file is re-hashed while it is copied and must still match the
    digest recorded in *source*; otherwise ``SourceChangedError`` is raised.
    File modes are normalized (0o755 for executables, 0o644 otherwise) and
    timestamps reset, so the scratch tree does not depend on the checkout.
    """
    dest = Path(dest)
    dest.mkdir(parents=True, exist_ok=True)
    for entry in source.entries:
        target = dest / entry.path
        target.parent.mkdir(parents=True, exist_ok=True)
        digest = hashlib.sha256()
        try:
            with (source.root / entry.path).open("rb") as src, target.open("wb") as out:
                for chunk in iter(lambda: src.read(_COPY_CHUNK), b""):
                    digest.update(chunk)
                    out.write(chunk)
        except FileNotFoundError as exc:
            raise SourceChangedError(f"{entry.path} disappeared after source filtering") from exc
        if digest.hexdigest() != entry.sha256:
            raise SourceChangedError(
                f"{entry.path} changed after source filtering "
                f"(expected {entry.sha256[:12]}, found {digest.hexdigest()[:12]})"
            )
        target.chmod(0o755 if entry.executable else 0o644)
        os.utime(target, (0, 0))
    return dest
