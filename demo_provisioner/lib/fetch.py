from __future__ import annotations

import hashlib
import logging
from pathlib import Path
from typing import Optional

from ..config import ArtifactDescriptor
from ..errors import ArtifactFetchFailure, CommandError
from .command import run_cmd, which

logger = logging.getLogger(__name__)

PART_SUFFIX = ".part"
COMPLETE_MARKER = Path(".cache") / "demo-provisioner.complete"


def sha256_of(path: Path, *, chunk_size: int = 1 << 20) -> str:
    h = hashlib.sha256()
    with path.open("rb") as f:
        for chunk in iter(lambda: f.read(chunk_size), b""):
            h.update(chunk)
    return h.hexdigest()


def file_present(path: Path, sha256: Optional[str] = None) -> bool:
    if not path.is_file() or path.stat().st_size == 0:
        return False
    if sha256 is not None and sha256_of(path) != sha256:
        logger.warning("Checksum mismatch for %s", path)
        return False
    return True


def repo_present(dest: Path, expect: tuple[str, ...] = ()) -> bool:
    if not dest.is_dir():
        return False
    if expect:
        return all(file_present(dest / rel) for rel in expect)
    # Without a file list only a finished download counts.
    return (dest / COMPLETE_MARKER).is_file()


def artifact_present(artifact: ArtifactDescriptor) -> bool:
    """The presence check: complete artifacts are never fetched again."""

    if artifact.is_repo:
        return repo_present(artifact.destination, artifact.expect)
    return file_present(artifact.destination, artifact.sha256)


def hub_cli(env_bin: Optional[Path] = None) -> str:
    """Prefer the environment's own huggingface-cli over one on PATH."""

    if env_bin is not None:
        candidate = env_bin / "huggingface-cli"
        if candidate.exists():
            return str(candidate)
    return which("huggingface-cli") or "huggingface-cli"


def fetch_url(url: str, dest: Path, *, sha256: Optional[str] = None, dry_run: bool = False) -> None:
    """Download ``url`` into ``dest`` via a ``.part`` file renamed on success."""

    part = dest.with_name(dest.name + PART_SUFFIX)
    if not dry_run:
        dest.parent.mkdir(parents=True, exist_ok=True)

    try:
        run_cmd(["wget", "-q", "--tries=3", "-O", str(part), url], dry_run=dry_run)
    except CommandError as e:
        if part.exists():
            part.unlink()
        raise ArtifactFetchFailure(f"download of {url} failed: {e}") from e

    if dry_run:
        return

    if not part.is_file() or part.stat().st_size == 0:
        if part.exists():
            part.unlink()
        raise ArtifactFetchFailure(f"download of {url} produced no data")

    if sha256 is not None:
        got = sha256_of(part)
        if got != sha256:
            part.unlink()
            raise ArtifactFetchFailure(f"checksum mismatch for {url}: expected {sha256}, got {got}")

    part.replace(dest)


def fetch_repo(
    repo_id: str,
    dest: Path,
    *,
    include: tuple[str, ...] = (),
    revision: Optional[str] = None,
    cli: str = "huggingface-cli",
    dry_run: bool = False,
) -> None:
    argv = [cli, "download", repo_id, "--local-dir", str(dest)]
    if revision:
        argv += ["--revision", revision]
    if include:
        argv += ["--include", *include]
    marker = dest / COMPLETE_MARKER
    if not dry_run:
        dest.mkdir(parents=True, exist_ok=True)
        if marker.exists():
            marker.unlink()
    try:
        run_cmd(argv, dry_run=dry_run)
    except CommandError as e:
        raise ArtifactFetchFailure(f"download of {repo_id} failed: {e}") from e
    if not dry_run:
        marker.parent.mkdir(parents=True, exist_ok=True)
        marker.write_text(f"{repo_id}\n", encoding="utf-8")


def fetch_artifact(artifact: ArtifactDescriptor, *, env_bin: Optional[Path] = None, dry_run: bool = False) -> str:
    if artifact.is_repo:
        assert artifact.repo_id is not None
        fetch_repo(
            artifact.repo_id,
            artifact.destination,
            include=artifact.include,
            revision=artifact.revision,
            cli=hub_cli(env_bin),
            dry_run=dry_run,
        )
        if not dry_run and not repo_present(artifact.destination, artifact.expect):
            raise ArtifactFetchFailure(f"{artifact.repo_id}: expected files missing after download")
        return f"downloaded {artifact.repo_id} -> {artifact.destination}"

    assert artifact.url is not None
    fetch_url(artifact.url, artifact.destination, sha256=artifact.sha256, dry_run=dry_run)
    return f"downloaded {artifact.destination.name}"
