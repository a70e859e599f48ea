"""Output registry — the three named, addressable outputs.

``packages.default``   the package derivation's store path
``devShells.default``  the development environment
``apps.default``       ``<package output path>/bin/<binary name>``

Entries are resolved once at evaluation time and are immutable afterwards.
The registry file is only written after every entry resolved, via a temp
file and an atomic replace, so an aborted build never leaves a
half-written registry behind.
"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Iterator, Mapping
from pathlib import Path
from types import MappingProxyType

from reprobuild.errors import RegistryError
from reprobuild.models.build import Derivation
from reprobuild.models.environment import DevEnvironment
from reprobuild.models.registry import (
    APP_KEY,
    DEV_SHELL_KEY,
    PACKAGE_KEY,
    OutputKind,
    RegistryEntry,
)

logger = logging.getLogger(__name__)


def app_program(derivation: Derivation, binary: str) -> str:
    """``<package output path>/bin/<binary name>``."""
    return f"{derivation.out_path}/bin/{binary}"


class OutputRegistry(Mapping[str, RegistryEntry]):
    """Write-once mapping of output keys to resolved entries."""

    def __init__(self, entries: Mapping[str, RegistryEntry] | None = None) -> None:
        self._entries: dict[str, RegistryEntry] = {}
        for entry in (entries or {}).values():
            self.register(entry)

    # Mapping interface -------------------------------------------------

    def __getitem__(self, key: str) -> RegistryEntry:
        return self._entries[key]

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self._entries))

    def __len__(self) -> int:
        return len(self._entries)

    def as_mapping(self) -> Mapping[str, RegistryEntry]:
        return MappingProxyType(self._entries)

    # Registration ------------------------------------------------------

    def register(self, entry: RegistryEntry) -> RegistryEntry:
        if entry.key in self._entries:
            raise RegistryError(f"Output {entry.key!r} is already registered and immutable")
        self._entries[entry.key] = entry
        return entry

    @classmethod
    def evaluate(
        cls,
        derivation: Derivation,
        environment: DevEnvironment,
        binary: str,
    ) -> OutputRegistry:
        """Resolve the package, dev shell and app entries in one pass."""
        if binary not in derivation.binaries:
            raise RegistryError(
                f"App binary {binary!r} is not an output of {derivation.identity.label} "
                f"(has: {', '.join(sorted(derivation.binaries))})"
            )
        registry = cls()
        registry.register(RegistryEntry(
            key=PACKAGE_KEY,
            kind=OutputKind.PACKAGE,
            path=str(derivation.out_path),
            derivation_hash=derivation.derivation_hash,
        ))
        registry.register(RegistryEntry(
            key=DEV_SHELL_KEY,
            kind=OutputKind.DEV_SHELL,
            path=str(environment.source_root),
            derivation_hash=environment.derivation_hash,
        ))
        registry.register(RegistryEntry(
            key=APP_KEY,
            kind=OutputKind.APP,
            program=app_program(derivation, binary),
            derivation_hash=derivation.derivation_hash,
        ))
        logger.info("Registry evaluated: app=%s", registry[APP_KEY].program)
        return registry

    # Persistence -------------------------------------------------------

    def save(self, path: Path) -> Path:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        payload = {k: self._entries[k].model_dump(mode="json") for k in self}
        tmp = path.with_name(f".{path.name}.tmp")
        tmp.write_text(json.dumps(payload, indent=2, sort_keys=True) + "\n", encoding="utf-8")
        os.replace(tmp, path)
        return path

    @classmethod
    def load(cls, path: Path) -> OutputRegistry:
        path = Path(path)
        if not path.exists():
            raise RegistryError(f"No registry at {path}; run `reprobuild build` first")
        data = json.loads(path.read_text(encoding="utf-8"))
        return cls({k: RegistryEntry.model_validate(v) for k, v in data.items()})
