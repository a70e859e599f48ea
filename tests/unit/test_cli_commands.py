"""Unit tests for the CLI — Typer command registration and basic behavior."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from reprobuild.cli.app import app
from reprobuild.cli.commands import build as build_module
from reprobuild.cli.commands import image as image_module
from reprobuild.cli.commands import info as info_module
from reprobuild.core.lock_resolver import load_lock, load_manifest, verify_lock
from reprobuild.core.pipeline import Pipeline
from reprobuild.core.source_filter import SourceFilter
from reprobuild.models.identity import RevisionState

runner = CliRunner()


class TestCliApp:
    """The CLI must register all expected commands and show help."""

    def test_no_args_shows_help(self):
        result = runner.invoke(app, [])
        assert result.exit_code in (0, 2)
        assert "usage" in result.output.lower()

    def test_help_flag(self):
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        for name in ("build", "image", "run", "develop", "lock", "version", "show"):
            assert name in result.output

    @pytest.mark.parametrize("command", ["build", "image", "run", "develop", "lock", "version", "show"])
    def test_command_help(self, command: str):
        result = runner.invoke(app, [command, "--help"])
        assert result.exit_code == 0

    def test_build_flag_names(self):
        result = runner.invoke(app, ["build", "--help"])
        assert "--online-check" in result.output
        assert "--run-tests" in result.output


class TestVersionCommand:
    def test_clean(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setattr(
            info_module, "read_revision_state", lambda root: RevisionState(rev="abc123ff", short_rev="abc123f")
        )
        result = runner.invoke(app, ["version", "--workspace", str(tmp_path)])
        assert result.exit_code == 0
        assert result.output.strip() == "abc123f"

    def test_unknown(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setattr(info_module, "read_revision_state", lambda root: RevisionState())
        result = runner.invoke(app, ["version", "--workspace", str(tmp_path)])
        assert result.output.strip() == "unknown"


class TestBuildAndShow:
    @pytest.fixture
    def patched(self, monkeypatch: pytest.MonkeyPatch, compiler, validator):
        monkeypatch.setattr(
            build_module,
            "Pipeline",
            lambda settings: Pipeline(settings, compiler=compiler, validator=validator),
        )

    def test_build_then_show(self, patched, workspace: Path):
        result = runner.invoke(
            app,
            [
                "build", "--workspace", str(workspace),
                "--name", "svc", "--version", "abc123", "--binary", "svc-server",
            ],
        )
        assert result.exit_code == 0, result.output
        assert "Build complete" in result.output
        assert (workspace / ".reprobuild" / "registry.json").exists()

        shown = runner.invoke(app, ["show", "--workspace", str(workspace)])
        assert shown.exit_code == 0
        assert "apps.default" in shown.output
        assert "packages.default" in shown.output
        assert "devShells.default" in shown.output

    def test_online_build_without_database_fails(self, patched, workspace: Path):
        result = runner.invoke(
            app,
            ["build", "--workspace", str(workspace), "--version", "abc123", "--online-check"],
        )
        assert result.exit_code == 1
        assert "LiveDependencyError" in result.output
        assert not (workspace / ".reprobuild" / "registry.json").exists()

    def test_show_without_build(self, tmp_path: Path):
        result = runner.invoke(app, ["show", "--workspace", str(tmp_path)])
        assert result.exit_code == 1
        assert "RegistryError" in result.output

    def test_run_without_build(self, tmp_path: Path):
        result = runner.invoke(app, ["run", "--workspace", str(tmp_path)])
        assert result.exit_code == 1


class TestImageCommand:
    @pytest.fixture
    def patched(self, monkeypatch: pytest.MonkeyPatch, compiler, validator):
        monkeypatch.setattr(
            image_module,
            "Pipeline",
            lambda settings: Pipeline(settings, compiler=compiler, validator=validator),
        )

    def test_image_with_tests_enabled(self, patched, workspace: Path, tmp_path: Path, compiler):
        dockerfile = tmp_path / "Dockerfile"
        result = runner.invoke(
            app,
            [
                "image", "--workspace", str(workspace), "--version", "abc123",
                "--binary", "svc-server", "--run-tests", "--dockerfile", str(dockerfile),
            ],
        )
        assert result.exit_code == 0, result.output
        assert compiler.test_calls == 1
        assert "RUN cargo test" in dockerfile.read_text(encoding="utf-8")

    def test_image_online_check_without_database(self, patched, workspace: Path):
        result = runner.invoke(
            app,
            ["image", "--workspace", str(workspace), "--version", "abc123", "--binary", "svc-server", "--online-check"],
        )
        assert result.exit_code == 1
        assert "LiveDependencyError" in result.output


class TestLockCommand:
    @pytest.fixture
    def index_path(self, tmp_path: Path) -> Path:
        index = {
            "serde": {"1.0.190": {"checksum": "1" * 64, "source": "registry"}},
            "tokio": {"1.33.0": {"checksum": "2" * 64, "source": "registry"}},
        }
        path = tmp_path / "index.json"
        path.write_text(json.dumps(index), encoding="utf-8")
        return path

    def test_writes_the_lock_the_build_reads(self, workspace: Path, index_path: Path):
        result = runner.invoke(app, ["lock", "--index", str(index_path), "--workspace", str(workspace)])
        assert result.exit_code == 0, result.output
        lock = load_lock(workspace / "Cargo.lock")
        assert lock.names == ["serde", "tokio"]
        verify_lock(load_manifest(workspace / "reprobuild.toml"), lock)
        # The workspace member entry survives the rewrite.
        assert 'name = "svc"' in (workspace / "Cargo.lock").read_text(encoding="utf-8")

    def test_json_lock_leaves_cache_key_unchanged(
        self,
        workspace: Path,
        index_path: Path,
        make_settings,
        compiler,
        validator,
        identity,
        monkeypatch: pytest.MonkeyPatch,
    ):
        monkeypatch.setenv("REPROBUILD_LOCK_FILE", "reprobuild.lock.json")
        before = SourceFilter(workspace).collect().cache_key
        result = runner.invoke(app, ["lock", "--index", str(index_path), "--workspace", str(workspace)])
        assert result.exit_code == 0, result.output
        assert SourceFilter(workspace).collect().cache_key == before

        settings = make_settings(workspace).model_copy(update={"lock_file": "reprobuild.lock.json"})
        build_input = Pipeline(settings, compiler=compiler, validator=validator).prepare(identity)
        assert build_input.lock == load_lock(workspace / "reprobuild.lock.json")

    def test_unsatisfiable(self, workspace: Path, tmp_path: Path):
        index_path = tmp_path / "index.json"
        index_path.write_text(json.dumps({"serde": {"3.0.0": {}}}), encoding="utf-8")
        result = runner.invoke(app, ["lock", "--index", str(index_path), "--workspace", str(workspace)])
        assert result.exit_code == 1
        assert "LockMismatchError" in result.output

    def test_missing_index(self, workspace: Path, tmp_path: Path):
        result = runner.invoke(
            app, ["lock", "--index", str(tmp_path / "absent.json"), "--workspace", str(workspace)]
        )
        assert result.exit_code == 1
        assert "Package index not found" in result.output
