"""Content-addressed artifact models (immutable)."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class ArtifactRef(BaseModel):
    """A reference to a content-addressed blob in the store.

    The content_address is the SHA-256 hex digest of the blob bytes.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    content_address: str  # "sha256:<hex>"
    artifact_type: str = "generic"
    size_bytes: int = 0
