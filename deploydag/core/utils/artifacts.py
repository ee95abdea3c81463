"""Content hashing and snapshots for deploy artifacts."""

from __future__ import annotations

import hashlib
import shutil
import tempfile
from pathlib import Path

from deploydag.core.logging import get_logger

logger = get_logger(__name__)

_CHUNK_SIZE = 1 << 16


def hash_artifact(path: str | Path) -> str:
    """Return a sha256 digest identifying an artifact.

    Files are hashed by content; directories by every file's relative path
    and content in sorted order. A path that does not exist locally (a
    remote package id, for instance) is hashed by its name.
    """
    artifact = Path(path)
    digest = hashlib.sha256()
    if artifact.is_file():
        _update_with_file(digest, artifact)
    elif artifact.is_dir():
        for file in sorted(p for p in artifact.rglob("*") if p.is_file()):
            digest.update(file.relative_to(artifact).as_posix().encode())
            digest.update(b"\0")
            _update_with_file(digest, file)
    else:
        digest.update(b"ref:")
        digest.update(str(path).encode())
    return f"sha256:{digest.hexdigest()}"


def _update_with_file(digest: "hashlib._Hash", file: Path) -> None:
    with file.open("rb") as f:
        while chunk := f.read(_CHUNK_SIZE):
            digest.update(chunk)


class ArtifactStore:
    """Content-addressed copies of the artifacts runs deploy.

    Each snapshot lives in ``<directory>/<hex digest>/<artifact name>`` and is
    never modified once written, so a rollback can ship the exact content a
    known-good attempt recorded even after the working copy has moved on.

    Examples
    --------
    Example usage::

        store = ArtifactStore(".deploydag/audit/artifacts")
        artifact_hash, snapshot = store.capture("force-app")
        assert store.get(artifact_hash) == snapshot
    """

    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory)

    def path_for(self, artifact_hash: str) -> Path:
        return self.directory / artifact_hash.removeprefix("sha256:")

    def get(self, artifact_hash: str) -> Path | None:
        """Return the stored snapshot for ``artifact_hash``, if any."""
        target = self.path_for(artifact_hash)
        if not target.is_dir():
            return None
        entries = list(target.iterdir())
        return entries[0] if len(entries) == 1 else None

    def capture(self, path: str | Path) -> tuple[str, Path | None]:
        """Snapshot the artifact at ``path`` and return ``(hash, snapshot)``.

        The hash is computed on the copy, so the snapshot always matches it.
        Paths that do not exist locally are hashed by reference and not
        stored.
        """
        source = Path(path)
        if not source.exists():
            return hash_artifact(path), None

        self.directory.mkdir(parents=True, exist_ok=True)
        staging: Path | None = Path(tempfile.mkdtemp(prefix=".capture-", dir=self.directory))
        try:
            copy = staging / source.name
            if source.is_dir():
                shutil.copytree(source, copy)
            else:
                shutil.copy2(source, copy)
            artifact_hash = hash_artifact(copy)
            target = self.path_for(artifact_hash)
            if not target.exists():
                try:
                    staging.rename(target)
                except OSError:
                    # Another capture of the same content won the rename
                    if not target.exists():
                        raise
                else:
                    staging = None
                    logger.debug("Stored artifact snapshot {hash}", hash=artifact_hash)
        finally:
            if staging is not None:
                shutil.rmtree(staging, ignore_errors=True)
        return artifact_hash, self.get(artifact_hash)
