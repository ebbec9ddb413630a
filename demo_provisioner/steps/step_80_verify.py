from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional

from ..config import VerifySpec
from ..context import RunContext
from ..errors import ProvisionError
from ..lib.command import run_cmd
from .base import BaseStep, fingerprint_of

logger = logging.getLogger(__name__)


class VerifyStep(BaseStep):
    name = "verify"

    def __init__(self, spec: VerifySpec) -> None:
        self.spec = spec
        self.mandatory = spec.mandatory

    def fingerprint(self, ctx: RunContext) -> Optional[str]:
        return fingerprint_of(self.spec, str(ctx.environment.path), str(ctx.app_dir))

    def run(self, ctx: RunContext) -> str:
        problems: List[str] = []
        python = str(ctx.environment.python)

        for module in self.spec.imports:
            r = run_cmd([python, "-c", f"import {module}"], check=False, dry_run=ctx.dry_run)
            if r.returncode != 0:
                last = (r.stderr.strip().splitlines() or ["import failed"])[-1]
                problems.append(f"import {module}: {last}")

        for rel in self.spec.files:
            p = Path(rel)
            if not p.is_absolute():
                p = ctx.app_dir / p
            if ctx.dry_run:
                logger.info("Would check %s", p)
            elif not p.is_file():
                problems.append(f"missing {p}")

        if problems:
            for p in problems:
                logger.warning("verify: %s", p)
            raise ProvisionError("; ".join(problems))
        return f"{len(self.spec.imports)} import(s), {len(self.spec.files)} file(s) ok"
