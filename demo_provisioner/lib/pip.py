from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Iterable, Optional, Sequence

from .command import run_cmd

logger = logging.getLogger(__name__)

_NAME_RE = re.compile(r"^\s*([A-Za-z0-9][A-Za-z0-9._-]*)")


def requirement_name(line: str) -> Optional[str]:
    """Project name of a requirements line, or None for comments/options."""

    stripped = line.strip()
    if not stripped or stripped.startswith(("#", "-")):
        return None
    m = _NAME_RE.match(stripped)
    if not m:
        return None
    return m.group(1).lower().replace("_", "-")


def filter_requirements(text: str, exclude: Iterable[str]) -> str:
    """Drop requirement lines whose project name is in ``exclude``."""

    excluded = {e.lower().replace("_", "-") for e in exclude}
    kept = []
    for line in text.splitlines():
        name = requirement_name(line)
        if name is not None and name in excluded:
            logger.info("Excluding requirement: %s", line.strip())
            continue
        kept.append(line)
    return "\n".join(kept) + "\n"


def pip_install(
    python: Path,
    packages: Sequence[str] = (),
    *,
    requirements: Optional[Path] = None,
    index_url: Optional[str] = None,
    extra_args: Sequence[str] = (),
    cwd: Optional[Path] = None,
    dry_run: bool = False,
) -> None:
    argv = [str(python), "-m", "pip", "install"]
    if index_url:
        argv += ["--index-url", index_url]
    argv += list(extra_args)
    if requirements is not None:
        argv += ["-r", str(requirements)]
    argv += list(packages)
    run_cmd(argv, cwd=(str(cwd) if cwd else None), dry_run=dry_run)


def pip_uninstall(python: Path, packages: Sequence[str], *, dry_run: bool = False) -> None:
    if not packages:
        return
    # Uninstalling something that is not installed is not an error here.
    run_cmd([str(python), "-m", "pip", "uninstall", "-y", *packages], check=False, dry_run=dry_run)
