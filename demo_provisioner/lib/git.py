from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from .command import run_cmd

logger = logging.getLogger(__name__)


def is_checkout(path: Path) -> bool:
    return (path / ".git").exists()


def remote_url(path: Path) -> Optional[str]:
    r = run_cmd(["git", "-C", str(path), "remote", "get-url", "origin"], check=False)
    if r.returncode != 0:
        return None
    return r.stdout.strip() or None


def same_remote(a: str, b: str) -> bool:
    def norm(u: str) -> str:
        u = u.strip().rstrip("/")
        return u[:-4] if u.endswith(".git") else u

    return norm(a) == norm(b)


def clone(
    repo: str,
    dest: Path,
    *,
    ref: Optional[str] = None,
    submodules: bool = False,
    dry_run: bool = False,
) -> None:
    argv = ["git", "clone"]
    if ref:
        argv += ["--branch", ref]
    if submodules:
        argv.append("--recurse-submodules")
    argv += [repo, str(dest)]
    if not dry_run:
        dest.parent.mkdir(parents=True, exist_ok=True)
    run_cmd(argv, dry_run=dry_run)


def lfs_pull(path: Path, *, dry_run: bool = False) -> None:
    run_cmd(["git", "lfs", "install"], cwd=str(path), dry_run=dry_run)
    run_cmd(["git", "lfs", "pull"], cwd=str(path), dry_run=dry_run)
