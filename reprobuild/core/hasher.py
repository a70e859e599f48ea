"""Canonical hashing helpers for derivation keys and content addressing.

Every cache key in the pipeline is computed from canonical JSON so that the
same logical inputs always hash identically, independent of dict ordering,
build machine, or wall-clock time.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

_CHUNK_SIZE = 1 << 16


def canonical_json_bytes(obj: Any) -> bytes:
    """Produce canonical JSON bytes — deterministic, sorted, compact.

    - sorted keys
    - no whitespace separators (",", ":")
    - ensure_ascii=True
    - UTF-8 encoding
    """
    return json.dumps(
        obj, sort_keys=True, separators=(",", ":"), ensure_ascii=True
    ).encode("utf-8")


def sha256_hex(data: bytes) -> str:
    """Return the SHA-256 hex digest of raw bytes."""
    return hashlib.sha256(data).hexdigest()


def file_sha256(path: Path) -> str:
    """Return the SHA-256 hex digest of a file's contents, read in chunks."""
    digest = hashlib.sha256()
    with Path(path).open("rb") as handle:
        for chunk in iter(lambda: handle.read(_CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


def content_address(obj: Any) -> str:
    """Content-address a JSON-serializable object.

    Returns "sha256:<hex>" format used by the artifact store.
    """
    return f"sha256:{sha256_hex(canonical_json_bytes(obj))}"


def compute_step_hash(step_id: str, payload: dict[str, Any]) -> str:
    """SHA-256 of canonical(step_id + payload).

    Used by the pipeline to log what each step consumed and produced.
    """
    return sha256_hex(canonical_json_bytes({"step_id": step_id, "payload": payload}))


def compute_derivation_hash(inputs: dict[str, Any]) -> str:
    """SHA-256 of the canonical build inputs.

    This is the derivation's identity: equal inputs yield an equal hash and
    therefore resolve to the same store path.
    """
    return sha256_hex(canonical_json_bytes({"derivation": inputs}))
