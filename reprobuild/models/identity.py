"""Package identity and version-control state models."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

UNKNOWN_VERSION = "unknown"
DIRTY_SUFFIX = "-dirty"


class PackageIdentity(BaseModel):
    """The {name, version} pair every build is keyed on."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1)
    version: str = UNKNOWN_VERSION

    @property
    def label(self) -> str:
        return f"{self.name}-{self.version}"


class RevisionState(BaseModel):
    """Snapshot of the source tree's version-control state.

    ``short_rev`` is set only for a clean checkout; ``dirty_short_rev`` only
    when the working tree carries modifications on top of a commit.  Both
    are ``None`` when the state cannot be determined (no repository, no
    commits, or no ``git`` on PATH).
    """

    model_config = ConfigDict(frozen=True)

    rev: str | None = None
    short_rev: str | None = None
    dirty_rev: str | None = None
    dirty_short_rev: str | None = None

    @property
    def is_clean(self) -> bool:
        return self.short_rev is not None

    @property
    def is_dirty(self) -> bool:
        return self.short_rev is None and self.dirty_short_rev is not None
