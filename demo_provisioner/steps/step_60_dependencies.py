from __future__ import annotations

import hashlib
import logging
from pathlib import Path
from typing import List, Optional

from ..config import DependencyGroup
from ..context import RunContext
from ..errors import ProvisionError
from ..lib.pip import filter_requirements, pip_install, pip_uninstall
from ..models import Presence
from .base import BaseStep, fingerprint_of

logger = logging.getLogger(__name__)


class DependencyGroupStep(BaseStep):
    """``pip install`` of one dependency group into the environment.

    The environment's own interpreter is used, so no shell activation is
    needed. Completion is tracked by fingerprint (group definition plus the
    contents of its requirements files).
    """

    def __init__(self, group: DependencyGroup) -> None:
        self.group = group
        self.name = f"deps:{group.name}"
        self.mandatory = not group.optional

    def _requirement_paths(self, ctx: RunContext) -> List[Path]:
        out: List[Path] = []
        for rel in self.group.requirements:
            p = Path(rel).expanduser()
            out.append(p if p.is_absolute() else ctx.app_dir / p)
        return out

    def fingerprint(self, ctx: RunContext) -> Optional[str]:
        contents = []
        for p in self._requirement_paths(ctx):
            contents.append(hashlib.sha256(p.read_bytes()).hexdigest() if p.is_file() else None)
        return fingerprint_of(self.group, str(ctx.environment.path), contents)

    def precondition(self, ctx: RunContext) -> Presence:
        # Anything beyond "not recorded yet" is decided by the fingerprint.
        return Presence.ABSENT

    def run(self, ctx: RunContext) -> str:
        python = ctx.environment.python
        if not ctx.dry_run and not python.exists():
            raise ProvisionError(f"environment interpreter missing: {python}")

        pip_uninstall(python, self.group.uninstall, dry_run=ctx.dry_run)

        for req in self._requirement_paths(ctx):
            if not req.is_file():
                if ctx.dry_run:
                    logger.info("Would install requirements from %s", req)
                    continue
                raise ProvisionError(f"{req} not found")
            if self.group.exclude:
                filtered = ctx.config.work_dir / f"{req.stem}.{self.group.name}.filtered.txt"
                if not ctx.dry_run:
                    filtered.parent.mkdir(parents=True, exist_ok=True)
                    filtered.write_text(
                        filter_requirements(req.read_text(encoding="utf-8", errors="replace"), self.group.exclude),
                        encoding="utf-8",
                    )
                req = filtered
            pip_install(
                python,
                requirements=req,
                index_url=self.group.index_url,
                extra_args=self.group.extra_args,
                cwd=ctx.app_dir if ctx.app_dir.exists() else None,
                dry_run=ctx.dry_run,
            )

        if self.group.packages:
            pip_install(
                python,
                self.group.packages,
                index_url=self.group.index_url,
                extra_args=self.group.extra_args,
                dry_run=ctx.dry_run,
            )

        count = len(self.group.packages) + len(self.group.requirements)
        return f"installed {self.group.name} ({count} spec(s))"
