"""Tests for VCS-derived version resolution."""

from __future__ import annotations

import subprocess
from pathlib import Path

import pytest

from reprobuild.core import version_resolver
from reprobuild.core.version_resolver import read_revision_state, resolve_version
from reprobuild.models.identity import UNKNOWN_VERSION, RevisionState


class TestResolveVersion:
    def test_clean_revision_uses_short_rev(self):
        assert resolve_version(RevisionState(rev="abc123ffff", short_rev="abc123")) == "abc123"

    def test_dirty_tree_uses_dirty_short_rev(self):
        state = RevisionState(dirty_rev="def456ffff-dirty", dirty_short_rev="def456-dirty")
        assert resolve_version(state) == "def456-dirty"

    def test_neither_resolves_to_unknown(self):
        assert resolve_version(RevisionState()) == UNKNOWN_VERSION == "unknown"

    def test_short_rev_takes_precedence(self):
        state = RevisionState(short_rev="abc123", dirty_short_rev="def456-dirty")
        assert resolve_version(state) == "abc123"

    def test_state_flags(self):
        assert RevisionState(short_rev="abc123").is_clean
        assert RevisionState(dirty_short_rev="abc123-dirty").is_dirty
        assert not RevisionState().is_clean
        assert not RevisionState().is_dirty


class TestReadRevisionState:
    def test_not_a_repository(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setattr(version_resolver, "_git", lambda root, *args: None)
        assert resolve_version(read_revision_state(tmp_path)) == "unknown"

    def test_git_missing(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setattr(version_resolver.shutil, "which", lambda name: None)
        assert read_revision_state(tmp_path) == RevisionState()

    def test_clean_checkout(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
        answers = {"rev-parse": "abc123456789", "status": ""}
        monkeypatch.setattr(version_resolver.shutil, "which", lambda name: "/usr/bin/git")
        monkeypatch.setattr(version_resolver, "_git", lambda root, *args: answers[args[0]])
        state = read_revision_state(tmp_path)
        assert state.rev == "abc123456789"
        assert state.short_rev == "abc1234"
        assert resolve_version(state) == "abc1234"

    def test_modified_checkout(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
        answers = {"rev-parse": "def456789012", "status": " M src/main.rs"}
        monkeypatch.setattr(version_resolver.shutil, "which", lambda name: "/usr/bin/git")
        monkeypatch.setattr(version_resolver, "_git", lambda root, *args: answers[args[0]])
        state = read_revision_state(tmp_path)
        assert state.short_rev is None
        assert resolve_version(state) == "def4567-dirty"

    def test_git_timeout_is_unknown(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
        def _timeout(*args, **kwargs):
            raise subprocess.TimeoutExpired(cmd="git", timeout=10)

        monkeypatch.setattr(version_resolver.shutil, "which", lambda name: "/usr/bin/git")
        monkeypatch.setattr(version_resolver.subprocess, "run", _timeout)
        assert resolve_version(read_revision_state(tmp_path)) == "unknown"
