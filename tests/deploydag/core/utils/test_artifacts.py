"""Tests for deploydag.core.utils.artifacts module."""

from pathlib import Path

from deploydag.core.utils.artifacts import ArtifactStore, hash_artifact


def test_file_hash_follows_content(tmp_path: Path) -> None:
    package = tmp_path / "package.zip"
    package.write_bytes(b"v1")
    first = hash_artifact(package)
    assert first.startswith("sha256:")
    assert hash_artifact(str(package)) == first

    package.write_bytes(b"v2")
    assert hash_artifact(package) != first


def test_directory_hash_covers_names_and_content(artifact: Path) -> None:
    original = hash_artifact(artifact)

    (artifact / "classes" / "Invoice.cls").write_text("public class Invoice { }")
    changed_content = hash_artifact(artifact)
    assert changed_content != original

    (artifact / "classes" / "Invoice.cls").rename(artifact / "classes" / "Bill.cls")
    assert hash_artifact(artifact) != changed_content


def test_missing_path_hashed_by_reference(tmp_path: Path) -> None:
    ref = tmp_path / "does-not-exist"
    assert hash_artifact(ref) == hash_artifact(ref)
    assert hash_artifact(ref) != hash_artifact(tmp_path / "other")


class TestArtifactStore:
    def test_capture_directory(self, tmp_path: Path, artifact: Path) -> None:
        store = ArtifactStore(tmp_path / "snapshots")
        artifact_hash, snapshot = store.capture(artifact)

        assert artifact_hash == hash_artifact(artifact)
        assert snapshot is not None
        assert snapshot.name == "force-app"
        assert hash_artifact(snapshot) == artifact_hash
        assert store.get(artifact_hash) == snapshot

    def test_snapshot_survives_source_changes(self, tmp_path: Path, artifact: Path) -> None:
        store = ArtifactStore(tmp_path / "snapshots")
        artifact_hash, snapshot = store.capture(artifact)

        (artifact / "classes" / "Invoice.cls").write_text("broken")

        assert hash_artifact(artifact) != artifact_hash
        assert (snapshot / "classes" / "Invoice.cls").read_text() == "public class Invoice {}"

    def test_same_content_captured_once(self, tmp_path: Path, artifact: Path) -> None:
        store = ArtifactStore(tmp_path / "snapshots")
        first = store.capture(artifact)
        second = store.capture(artifact)

        assert first == second
        assert len(list(store.directory.iterdir())) == 1

    def test_capture_file(self, tmp_path: Path) -> None:
        package = tmp_path / "package.zip"
        package.write_bytes(b"v1")
        store = ArtifactStore(tmp_path / "snapshots")

        artifact_hash, snapshot = store.capture(package)

        assert snapshot is not None
        assert snapshot.read_bytes() == b"v1"
        assert artifact_hash == hash_artifact(package)

    def test_missing_path_not_stored(self, tmp_path: Path) -> None:
        store = ArtifactStore(tmp_path / "snapshots")
        artifact_hash, snapshot = store.capture(tmp_path / "04t000000000001")

        assert snapshot is None
        assert store.get(artifact_hash) is None
        assert not store.directory.exists()

    def test_unknown_hash(self, tmp_path: Path) -> None:
        assert ArtifactStore(tmp_path).get("sha256:" + "0" * 64) is None
