"""Tests for ContentAddressedStore — immutability, integrity, atomic publish."""

from __future__ import annotations

from pathlib import Path

import pytest

from reprobuild.core.artifact_store import ContentAddressedStore
from reprobuild.core.hasher import file_sha256, sha256_hex
from reprobuild.errors import ArtifactIntegrityError
from reprobuild.models.identity import PackageIdentity


class TestBlobs:
    def test_store_and_retrieve(self, artifact_store: ContentAddressedStore):
        data = b"hello reprobuild"
        artifact = artifact_store.store(data, name="test.txt")
        assert artifact.content_address.startswith("sha256:")
        assert artifact.size_bytes == len(data)
        assert artifact_store.retrieve(artifact.content_address) == data

    def test_content_addressing(self, artifact_store: ContentAddressedStore):
        data = b"deterministic content"
        artifact = artifact_store.store(data)
        assert artifact.content_address == f"sha256:{sha256_hex(data)}"

    def test_idempotent_store(self, artifact_store: ContentAddressedStore):
        a1 = artifact_store.store(b"twice", name="first")
        a2 = artifact_store.store(b"twice", name="second")
        assert a1.content_address == a2.content_address

    def test_exists_and_verify(self, artifact_store: ContentAddressedStore):
        artifact = artifact_store.store(b"check")
        assert artifact_store.exists(artifact.content_address)
        assert artifact_store.verify(artifact.content_address)
        assert not artifact_store.exists("sha256:nonexistent")
        assert not artifact_store.verify("sha256:nonexistent")

    def test_retrieve_nonexistent(self, artifact_store: ContentAddressedStore):
        with pytest.raises(FileNotFoundError):
            artifact_store.retrieve("sha256:0000000000000000")

    def test_corrupted_blob_rejected_on_restore(self, artifact_store: ContentAddressedStore):
        data = b"original"
        artifact = artifact_store.store(data)
        digest = artifact.content_address.removeprefix("sha256:")
        path = artifact_store.base_path / "blobs" / digest[:2] / digest[2:4] / f"{digest}.dat"
        path.write_bytes(b"tampered")
        assert not artifact_store.verify(artifact.content_address)
        with pytest.raises(ArtifactIntegrityError):
            artifact_store.store(data)


class TestOutputs:
    def test_output_path_is_deterministic(self, artifact_store: ContentAddressedStore):
        identity = PackageIdentity(name="svc", version="abc123")
        drv = "f" * 64
        path = artifact_store.output_path(drv, identity)
        assert path == artifact_store.output_path(drv, identity)
        assert path.name == f"{'f' * 32}-svc-abc123"

    def test_staging_is_removed(self, artifact_store: ContentAddressedStore):
        with artifact_store.staging() as staged:
            (staged / "file").write_text("x", encoding="utf-8")
            assert staged.parent == artifact_store.base_path
        assert not staged.exists()

    def test_staging_removed_on_error(self, artifact_store: ContentAddressedStore):
        with pytest.raises(RuntimeError):
            with artifact_store.staging() as staged:
                raise RuntimeError("cancelled")
        assert not staged.exists()

    def test_publish_is_first_writer_wins(self, artifact_store: ContentAddressedStore):
        out = artifact_store.base_path / "out"
        with artifact_store.staging() as staged:
            first = staged / "first"
            first.mkdir()
            (first / "v").write_text("1", encoding="utf-8")
            artifact_store.publish(first, out)
        with artifact_store.staging() as staged:
            second = staged / "second"
            second.mkdir()
            (second / "v").write_text("2", encoding="utf-8")
            artifact_store.publish(second, out)
        assert (out / "v").read_text(encoding="utf-8") == "1"

    def test_verify_output(self, artifact_store: ContentAddressedStore):
        out = artifact_store.base_path / "pkg"
        (out / "bin").mkdir(parents=True)
        (out / "bin" / "svc-server").write_bytes(b"binary")
        digests = {"svc-server": file_sha256(out / "bin" / "svc-server")}
        artifact_store.verify_output(out, digests)
        (out / "bin" / "svc-server").write_bytes(b"swapped")
        with pytest.raises(ArtifactIntegrityError, match="bin/svc-server"):
            artifact_store.verify_output(out, digests)
