"""Runtime/environment manager wrappers (conda and venv)."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from .command import run_cmd, which

logger = logging.getLogger(__name__)

CONDA_INIT_MARKER = "conda initialize"


def conda_installed(conda_exe: Path) -> bool:
    return conda_exe.exists()


def install_miniconda(
    *,
    prefix: Path,
    installer_url: str,
    download_dir: Path,
    dry_run: bool = False,
) -> None:
    """Batch-install Miniconda into ``prefix`` (``bash installer -b -p prefix``)."""

    installer = download_dir / "miniconda.sh"
    if not dry_run:
        download_dir.mkdir(parents=True, exist_ok=True)
    run_cmd(["wget", "-q", installer_url, "-O", str(installer)], dry_run=dry_run)
    try:
        run_cmd(["bash", str(installer), "-b", "-p", str(prefix)], dry_run=dry_run)
    finally:
        if not dry_run and installer.exists():
            installer.unlink()


def conda_env_exists(conda_exe: Path, name: str, env_path: Path) -> bool:
    """True if the named environment is registered or its directory exists."""

    if env_path.exists():
        return True
    if not conda_exe.exists():
        return False
    r = run_cmd([str(conda_exe), "env", "list"], check=False)
    if r.returncode != 0:
        return False
    for line in r.stdout.splitlines():
        fields = line.split()
        if fields and fields[0] == name:
            return True
    return False


def conda_create(conda_exe: Path, name: str, python_version: str, *, dry_run: bool = False) -> None:
    run_cmd([str(conda_exe), "create", "-n", name, f"python={python_version}", "-y"], dry_run=dry_run)


def conda_remove(conda_exe: Path, name: str, *, dry_run: bool = False) -> None:
    run_cmd([str(conda_exe), "env", "remove", "-n", name, "-y"], dry_run=dry_run)


def shell_init_present(rc_file: Path) -> bool:
    if not rc_file.exists():
        return False
    return CONDA_INIT_MARKER in rc_file.read_text(encoding="utf-8", errors="replace")


def conda_init_shell(conda_exe: Path, shell: str = "bash", *, dry_run: bool = False) -> None:
    run_cmd([str(conda_exe), "init", shell], dry_run=dry_run)


def find_python(series: str) -> Optional[str]:
    """Locate ``python3.10`` style interpreters for a major.minor series."""

    return which(f"python{series}")


def python_version_of(python: str) -> Optional[str]:
    r = run_cmd(
        [python, "-c", "import sys; print('%d.%d' % sys.version_info[:2])"],
        check=False,
    )
    if r.returncode != 0:
        return None
    return r.stdout.strip() or None


def venv_create(python: str, env_path: Path, *, dry_run: bool = False) -> None:
    run_cmd([python, "-m", "venv", str(env_path)], dry_run=dry_run)
    run_cmd([str(env_path / "bin" / "python"), "-m", "pip", "install", "-U", "pip"], dry_run=dry_run)


def env_python_version(env_python: Path) -> Optional[str]:
    if not env_python.exists():
        return None
    return python_version_of(str(env_python))
