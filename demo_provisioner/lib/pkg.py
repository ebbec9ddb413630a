from __future__ import annotations

import logging
from pathlib import Path
from typing import Sequence

from .command import run_cmd, sudo_prefix, which

logger = logging.getLogger(__name__)

APT_ENV = {"DEBIAN_FRONTEND": "noninteractive"}


def apt_available() -> bool:
    return which("apt-get") is not None and which("dpkg-query") is not None


def dpkg_installed(package: str) -> bool:
    """Return True if dpkg reports the package as installed."""

    r = run_cmd(["dpkg-query", "-W", "-f=${Status}", package], check=False)
    return r.returncode == 0 and "install ok installed" in r.stdout


def missing_packages(packages: Sequence[str]) -> list[str]:
    return [p for p in packages if not dpkg_installed(p)]


def apt_update(*, dry_run: bool = False) -> None:
    run_cmd([*sudo_prefix(), "apt-get", "update"], env=APT_ENV, dry_run=dry_run)


def apt_install(
    packages: Sequence[str],
    *,
    with_recommends: bool = True,
    dry_run: bool = False,
) -> None:
    if not packages:
        return
    argv = [*sudo_prefix(), "apt-get", "install", "-y"]
    if not with_recommends:
        argv.append("--no-install-recommends")
    run_cmd([*argv, *packages], env=APT_ENV, dry_run=dry_run)


def dpkg_install(deb_path: Path, *, dry_run: bool = False) -> None:
    run_cmd([*sudo_prefix(), "dpkg", "-i", str(deb_path)], env=APT_ENV, dry_run=dry_run)
