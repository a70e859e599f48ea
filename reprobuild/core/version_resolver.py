"""Version resolution from version-control state.

A clean revision yields its short identifier, a modified tree yields the
dirty-marked short identifier, and anything unresolvable yields the literal
``"unknown"``.
"""

from __future__ import annotations

import logging
import shutil
import subprocess
from pathlib import Path

from reprobuild.models.identity import DIRTY_SUFFIX, UNKNOWN_VERSION, RevisionState

logger = logging.getLogger(__name__)

SHORT_REV_LENGTH = 7


def resolve_version(state: RevisionState) -> str:
    """Map a ``RevisionState`` to a package version string."""
    if state.short_rev:
        return state.short_rev
    if state.dirty_short_rev:
        return state.dirty_short_rev
    return UNKNOWN_VERSION


def _git(root: Path, *args: str) -> str | None:
    try:
        result = subprocess.run(
            ["git", "-C", str(root), *args],
            capture_output=True,
            text=True,
            timeout=10,
        )
    except (subprocess.SubprocessError, OSError) as exc:
        logger.debug("git %s failed: %s", " ".join(args), exc)
        return None
    if result.returncode != 0:
        return None
    return result.stdout.strip()


def read_revision_state(root: Path) -> RevisionState:
    """Inspect ``root`` with ``git`` and return its revision state.

    Returns an empty ``RevisionState`` (which resolves to ``"unknown"``)
    when ``git`` is missing, ``root`` is not a repository, or HEAD does not
    point at a commit.
    """
    if shutil.which("git") is None:
        logger.warning("git not found on PATH; version resolves to %r", UNKNOWN_VERSION)
        return RevisionState()

    rev = _git(root, "rev-parse", "--verify", "HEAD")
    if not rev:
        return RevisionState()

    short = rev[:SHORT_REV_LENGTH]
    status = _git(root, "status", "--porcelain", "--untracked-files=no")
    if status is None:
        return RevisionState()
    if status:
        return RevisionState(
            dirty_rev=f"{rev}{DIRTY_SUFFIX}",
            dirty_short_rev=f"{short}{DIRTY_SUFFIX}",
        )
    return RevisionState(rev=rev, short_rev=short)
