"""Shared test fixtures for reprobuild."""

from __future__ import annotations

import json
from collections.abc import Callable, Mapping
from pathlib import Path

import pytest

from reprobuild.config import BuildSettings
from reprobuild.core.artifact_store import ContentAddressedStore
from reprobuild.core.hasher import canonical_json_bytes, file_sha256, sha256_hex
from reprobuild.core.pipeline import Pipeline
from reprobuild.core.query_checker import METADATA_DIR, QueryValidator
from reprobuild.errors import CompilationError
from reprobuild.models.build import BuildInput
from reprobuild.models.identity import PackageIdentity

SERVER_QUERY = "SELECT id, name FROM programs WHERE name = $1"

MANIFEST_TOML = """\
[package]
name = "svc"

[dependencies]
serde = ">=1.0,<2"
tokio = ">=1.30"

[[bin]]
name = "svc-server"

[[bin]]
name = "svc-client"
"""

MAIN_RS = """\
fn main() {
    let programs = sqlx::query!("%s", name)
        .fetch_all(&pool)
        .await?;
}
""" % SERVER_QUERY

CRATES_IO = "registry+https://github.com/rust-lang/crates.io-index"


def checksum_for(name: str, version: str) -> str:
    """A well-formed, stable sha256 checksum for a test crate."""
    return sha256_hex(f"{name}-{version}".encode())


def cargo_lock(tokio_version: str = "1.33.0") -> str:
    entries = [
        ("pin-project-lite", "0.2.13", []),
        ("serde", "1.0.190", []),
        ("tokio", tokio_version, ["pin-project-lite"]),
    ]
    lines = ["version = 3", ""]
    for name, version, deps in entries:
        lines += [
            "[[package]]",
            f'name = "{name}"',
            f'version = "{version}"',
            f'source = "{CRATES_IO}"',
            f'checksum = "{checksum_for(name, version)}"',
        ]
        if deps:
            lines.append("dependencies = [" + ", ".join(f'"{d}"' for d in deps) + "]")
        lines.append("")
    # Workspace member: no source, not a dependency.
    lines += [
        "[[package]]",
        'name = "svc"',
        'version = "0.1.0"',
        'dependencies = ["serde", "tokio"]',
        "",
    ]
    return "\n".join(lines)


class FakeCompiler:
    """Deterministic stand-in for cargo.

    Each binary's bytes are derived from the materialized source tree and
    the build environment only, so equal inputs yield equal binaries and
    any leaked path or timestamp would show up as a difference.
    """

    def __init__(
        self,
        *,
        test_result: tuple[int, str] = (0, "test result: ok. 12 passed; 0 failed"),
        compile_failure: str | None = None,
    ) -> None:
        self.test_result = test_result
        self.compile_failure = compile_failure
        self.compile_calls = 0
        self.test_calls = 0
        self.seen_env: dict[str, str] = {}
        self.seen_files: list[str] = []

    def _tree_digest(self, workdir: Path) -> str:
        files = sorted(
            p for p in workdir.rglob("*")
            if p.is_file() and "target" not in p.relative_to(workdir).parts
        )
        self.seen_files = [p.relative_to(workdir).as_posix() for p in files]
        listing = [[p.relative_to(workdir).as_posix(), file_sha256(p)] for p in files]
        return sha256_hex(canonical_json_bytes(listing))

    def compile(
        self, workdir: Path, binaries: list[str], env: Mapping[str, str]
    ) -> dict[str, Path]:
        self.compile_calls += 1
        self.seen_env = dict(env)
        if self.compile_failure is not None:
            raise CompilationError(
                "cargo build exited with code 101",
                returncode=101,
                output=self.compile_failure,
            )
        tree = self._tree_digest(workdir)
        env_digest = sha256_hex(canonical_json_bytes(dict(env)))
        out_dir = workdir / "target" / "release"
        out_dir.mkdir(parents=True, exist_ok=True)
        built: dict[str, Path] = {}
        for name in binaries:
            path = out_dir / name
            path.write_bytes(b"\x7fELF" + f"{name}:{tree}:{env_digest}".encode())
            built[name] = path
        return built

    def run_tests(self, workdir: Path, env: Mapping[str, str]) -> tuple[int, str]:
        self.test_calls += 1
        return self.test_result


def refuse_connection(address: tuple[str, int], timeout: float):
    raise ConnectionRefusedError(111, "Connection refused")


@pytest.fixture
def tmp_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for test artifacts."""
    return tmp_path


@pytest.fixture
def make_workspace(tmp_path: Path) -> Callable[..., Path]:
    """Factory fixture: write a small two-binary service workspace."""

    def _factory(name: str = "workspace", *, with_metadata: bool = True) -> Path:
        root = tmp_path / name
        (root / "src").mkdir(parents=True)
        (root / "reprobuild.toml").write_text(MANIFEST_TOML, encoding="utf-8")
        (root / "Cargo.lock").write_text(cargo_lock(), encoding="utf-8")
        (root / "Cargo.toml").write_text('[workspace]\nmembers = ["."]\n', encoding="utf-8")
        (root / "src" / "main.rs").write_text(MAIN_RS, encoding="utf-8")
        (root / "src" / "client.rs").write_text("fn main() {}\n", encoding="utf-8")
        if with_metadata:
            digest = sha256_hex(SERVER_QUERY.encode("utf-8"))
            meta = root / METADATA_DIR / f"query-{digest}.json"
            meta.parent.mkdir()
            meta.write_text(
                json.dumps({"query": SERVER_QUERY, "describe": {"columns": []}}),
                encoding="utf-8",
            )
        return root

    return _factory


@pytest.fixture
def workspace(make_workspace: Callable[..., Path]) -> Path:
    return make_workspace()


@pytest.fixture
def make_settings() -> Callable[[Path], BuildSettings]:
    def _factory(root: Path) -> BuildSettings:
        return BuildSettings(
            workspace_root=root,
            state_dir=root / ".reprobuild",
            store_path=root / ".reprobuild" / "store",
            registry_path=root / ".reprobuild" / "registry.json",
            package_name="svc",
            binaries=["svc-server", "svc-client"],
            default_binary="svc-server",
        )

    return _factory


@pytest.fixture
def settings(workspace: Path, make_settings: Callable[[Path], BuildSettings]) -> BuildSettings:
    return make_settings(workspace)


@pytest.fixture
def make_compiler() -> type[FakeCompiler]:
    """The fake compiler class, for tests that need a non-default one."""
    return FakeCompiler


@pytest.fixture
def compiler() -> FakeCompiler:
    return FakeCompiler()


@pytest.fixture
def validator() -> QueryValidator:
    """A validator whose online mode always finds the database unreachable."""
    return QueryValidator(connector=refuse_connection)


@pytest.fixture
def pipeline(settings: BuildSettings, compiler: FakeCompiler, validator: QueryValidator) -> Pipeline:
    return Pipeline(settings, compiler=compiler, validator=validator)


@pytest.fixture
def identity() -> PackageIdentity:
    return PackageIdentity(name="svc", version="abc123")


@pytest.fixture
def build_input(pipeline: Pipeline, identity: PackageIdentity) -> BuildInput:
    return pipeline.collect_input(identity)


@pytest.fixture
def artifact_store(tmp_dir: Path) -> ContentAddressedStore:
    """Provide a fresh ContentAddressedStore in a temp directory."""
    return ContentAddressedStore(tmp_dir / "store")
