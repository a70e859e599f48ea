"""Dependency lock resolution and verification.

The resolver turns a manifest of requested ranges into a fully pinned lock:
one exact version plus content hash per transitive dependency.  At package
build time the lock is only *verified* against the manifest, never
re-resolved; a missing or inconsistent entry is a hard failure.
"""

from __future__ import annotations

import json
import logging
import re
import tomllib
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from packaging.specifiers import InvalidSpecifier, SpecifierSet
from packaging.version import InvalidVersion, Version
from pydantic import ValidationError

from reprobuild.core.hasher import canonical_json_bytes
from reprobuild.errors import LockMismatchError
from reprobuild.models.lock import (
    BinaryTarget,
    DependencyLock,
    LockedDependency,
    Manifest,
)

logger = logging.getLogger(__name__)

_CHECKSUM_RE = re.compile(r"^[0-9a-f]{64}$")

# name -> version -> {"checksum": ..., "source": ..., "dependencies": {name: range}}
PackageIndex = Mapping[str, Mapping[str, Mapping[str, Any]]]


def _specifier(ranges: list[str], owner: str) -> SpecifierSet:
    joined = ",".join(r.strip() for r in ranges if r and r.strip())
    try:
        return SpecifierSet(joined)
    except InvalidSpecifier as exc:
        raise LockMismatchError(f"Invalid version range {joined!r} required by {owner}") from exc


def _satisfies(version: str, spec: SpecifierSet) -> bool:
    try:
        return Version(version) in spec
    except InvalidVersion:
        return False


class LockResolver:
    """Resolves a manifest against a package index into a ``DependencyLock``.

    Parameters
    ----------
    index:
        Available versions per package, with content hashes and each
        version's own dependency ranges.
    max_rounds:
        Upper bound on fixpoint iterations before giving up.
    """

    def __init__(self, index: PackageIndex, *, max_rounds: int = 50) -> None:
        self._index = index
        self._max_rounds = max_rounds

    def _pick(self, name: str, ranges: list[str], owners: list[str]) -> str:
        versions = self._index.get(name)
        if not versions:
            raise LockMismatchError(
                f"Dependency {name!r} (required by {', '.join(owners)}) is not in the index"
            )
        spec = _specifier(ranges, name)
        candidates = [v for v in versions if _satisfies(v, spec)]
        if not candidates:
            raise LockMismatchError(
                f"No version of {name!r} satisfies {str(spec)!r} "
                f"(required by {', '.join(owners)})"
            )
        return max(candidates, key=Version)

    def resolve(self, manifest: Manifest) -> DependencyLock:
        """Pin every transitive dependency of *manifest*.

        Each round recomputes the constraint set from the manifest and the
        currently selected versions, then picks the highest satisfying
        version per package, until the selection stops changing.
        """
        selected: dict[str, str] = {}
        for round_no in range(1, self._max_rounds + 1):
            ranges: dict[str, list[str]] = {}
            owners: dict[str, list[str]] = {}
            for dep, rng in manifest.dependencies.items():
                ranges.setdefault(dep, []).append(rng)
                owners.setdefault(dep, []).append(manifest.name)
            for name, version in selected.items():
                deps = self._index[name][version].get("dependencies", {})
                for dep, rng in deps.items():
                    ranges.setdefault(dep, []).append(rng)
                    owners.setdefault(dep, []).append(f"{name}@{version}")

            picked = {
                name: self._pick(name, ranges[name], owners[name])
                for name in sorted(ranges)
            }
            if picked == selected:
                logger.info(
                    "Resolved %d dependencies for %s in %d rounds",
                    len(picked), manifest.name, round_no,
                )
                return self._build_lock(picked)
            selected = picked

        raise LockMismatchError(
            f"Dependency resolution for {manifest.name} did not converge "
            f"after {self._max_rounds} rounds"
        )

    def _build_lock(self, selected: dict[str, str]) -> DependencyLock:
        packages = []
        for name in sorted(selected):
            version = selected[name]
            meta = self._index[name][version]
            packages.append(
                LockedDependency(
                    name=name,
                    version=version,
                    checksum=meta.get("checksum", ""),
                    source=meta.get("source", "registry"),
                    dependencies=dict(meta.get("dependencies", {})),
                )
            )
        return DependencyLock(packages=packages)


def verify_lock(manifest: Manifest, lock: DependencyLock) -> None:
    """Check that *lock* fully and consistently covers *manifest*.

    Collects every problem and raises a single ``LockMismatchError``.  The
    lock is never upgraded or amended here.
    """
    problems: list[str] = []

    def _check(name: str, rng: str, owner: str) -> None:
        # A crate may be locked at several versions; one satisfying entry is enough.
        candidates = lock.versions_of(name)
        if not candidates:
            problems.append(f"{name} (required by {owner}) is missing from the lock")
            return
        spec = _specifier([rng], owner)
        if str(spec) and not any(_satisfies(c.version, spec) for c in candidates):
            locked = ", ".join(f"{name}@{c.version}" for c in candidates)
            problems.append(f"{locked} does not satisfy {rng!r} required by {owner}")

    for name, rng in sorted(manifest.dependencies.items()):
        _check(name, rng, manifest.name)

    for pkg in lock.packages:
        if not _CHECKSUM_RE.match(pkg.checksum):
            problems.append(f"{pkg.name}@{pkg.version} has no valid sha256 checksum")
        for dep, rng in sorted(pkg.dependencies.items()):
            _check(dep, rng, f"{pkg.name}@{pkg.version}")

    if problems:
        msg = "Lock does not match manifest:\n" + "\n".join(f"  - {p}" for p in problems)
        logger.error(msg)
        raise LockMismatchError(msg)

    logger.info("Lock verified: %d packages cover %s", len(lock.packages), manifest.name)


# ---------------------------------------------------------------------------
# Loading and writing
# ---------------------------------------------------------------------------


def _cargo_dependency(spec: str) -> tuple[str, str]:
    # Cargo.lock lists dependencies as "name" or "name version (source)".
    parts = spec.split()
    if len(parts) >= 2:
        return parts[0], f"=={parts[1]}"
    return parts[0], ""


def load_lock(path: Path) -> DependencyLock:
    """Load a lock from canonical JSON or a Cargo.lock-style TOML file.

    In TOML locks, entries without a ``source`` are workspace members, not
    dependencies, and are skipped.
    """
    path = Path(path)
    if not path.exists():
        raise LockMismatchError(f"Lock file not found: {path}")
    if path.suffix == ".json":
        try:
            return DependencyLock.model_validate_json(path.read_bytes())
        except ValidationError as exc:
            raise LockMismatchError(f"Malformed lock file {path}: {exc}") from exc

    try:
        with path.open("rb") as handle:
            data = tomllib.load(handle)
    except tomllib.TOMLDecodeError as exc:
        raise LockMismatchError(f"Malformed lock file {path}: {exc}") from exc

    packages = []
    for entry in data.get("package", []):
        if not entry.get("source"):
            continue
        deps = dict(_cargo_dependency(d) for d in entry.get("dependencies", []))
        packages.append(
            LockedDependency(
                name=entry["name"],
                version=entry["version"],
                checksum=entry.get("checksum", ""),
                source=entry["source"],
                dependencies=deps,
            )
        )
    packages.sort(key=lambda p: (p.name, p.version))
    return DependencyLock(version=int(data.get("version", 3)), packages=packages)


def _toml_str(value: str) -> str:
    # JSON string escaping is valid TOML basic-string escaping.
    return json.dumps(value, ensure_ascii=False)


def _cargo_entry(name: str, version: str, source: str, checksum: str, deps: list[str]) -> list[str]:
    lines = ["[[package]]", f"name = {_toml_str(name)}", f"version = {_toml_str(version)}"]
    if source:
        lines.append(f"source = {_toml_str(source)}")
    if checksum:
        lines.append(f"checksum = {_toml_str(checksum)}")
    if deps:
        lines.append("dependencies = [")
        lines += [f" {_toml_str(d)}," for d in deps]
        lines.append("]")
    return lines + [""]


def _dump_cargo_lock(lock: DependencyLock, path: Path) -> bytes:
    # Workspace members (entries without a source) are not resolver output;
    # keep the ones already recorded at *path*.
    members: list[dict[str, Any]] = []
    if path.exists():
        with path.open("rb") as handle:
            existing = tomllib.load(handle)
        members = [e for e in existing.get("package", []) if not e.get("source")]

    entries: list[tuple[str, str, list[str]]] = []
    for pkg in lock.packages:
        deps = []
        for dep in sorted(pkg.dependencies):
            # Cargo only qualifies a dependency with its version when the
            # crate is locked at more than one version.
            pinned = [c.version for c in lock.versions_of(dep)]
            if len(pinned) > 1:
                spec = _specifier([pkg.dependencies[dep]], f"{pkg.name}@{pkg.version}")
                chosen = [v for v in pinned if _satisfies(v, spec)]
                deps.append(f"{dep} {max(chosen or pinned, key=Version)}")
            else:
                deps.append(dep)
        entries.append((pkg.name, pkg.version, _cargo_entry(pkg.name, pkg.version, pkg.source, pkg.checksum, deps)))
    for member in members:
        entries.append((
            member["name"],
            member["version"],
            _cargo_entry(member["name"], member["version"], "", "", list(member.get("dependencies", []))),
        ))

    lines = [f"version = {lock.version}", ""]
    for _, _, block in sorted(entries, key=lambda e: (e[0], e[1])):
        lines += block
    return "\n".join(lines).encode("utf-8")


def dump_lock(lock: DependencyLock, path: Path) -> Path:
    """Write *lock* to *path* and return the path.

    ``.json`` paths get canonical JSON; anything else is written in the
    Cargo.lock layout that ``load_lock`` reads, keeping workspace members.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    if path.suffix == ".json":
        data = canonical_json_bytes(lock.model_dump(mode="json")) + b"\n"
    else:
        data = _dump_cargo_lock(lock, path)
    tmp = path.with_name(f".{path.name}.tmp")
    tmp.write_bytes(data)
    tmp.replace(path)
    logger.info("Wrote lock with %d packages to %s", len(lock.packages), path)
    return path


def load_manifest(path: Path) -> Manifest:
    """Load a TOML manifest with ``[package]``, ``[dependencies]`` and ``[[bin]]``."""
    path = Path(path)
    try:
        with path.open("rb") as handle:
            data = tomllib.load(handle)
    except FileNotFoundError as exc:
        raise LockMismatchError(f"Manifest not found: {path}") from exc
    except tomllib.TOMLDecodeError as exc:
        raise LockMismatchError(f"Malformed manifest {path}: {exc}") from exc

    deps: dict[str, str] = {}
    for name, value in data.get("dependencies", {}).items():
        if isinstance(value, dict):
            deps[name] = str(value.get("version", ""))
        else:
            deps[name] = str(value)

    binaries = [
        BinaryTarget(name=b["name"], package=b.get("package", ""))
        for b in data.get("bin", [])
    ]
    name = data.get("package", {}).get("name") or path.parent.resolve().name
    return Manifest(name=name, dependencies=deps, binaries=binaries)


def load_index(path: Path) -> dict[str, dict[str, dict[str, Any]]]:
    """Load a package index from JSON."""
    path = Path(path)
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise LockMismatchError(f"Package index not found: {path}") from exc
    except json.JSONDecodeError as exc:
        raise LockMismatchError(f"Malformed package index {path}: {exc}") from exc
