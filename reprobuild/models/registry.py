"""Output registry entry models."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict


class OutputKind(str, Enum):
    """The three addressable output kinds."""

    PACKAGE = "package"
    DEV_SHELL = "devShell"
    APP = "app"


PACKAGE_KEY = "packages.default"
DEV_SHELL_KEY = "devShells.default"
APP_KEY = "apps.default"


class RegistryEntry(BaseModel):
    """A resolved output: a store path or an invocation program.

    Created once at evaluation time and never mutated.
    """

    model_config = ConfigDict(frozen=True)

    key: str
    kind: OutputKind
    path: str = ""
    program: str = ""
    derivation_hash: str = ""
