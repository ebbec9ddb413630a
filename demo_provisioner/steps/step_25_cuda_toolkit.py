from __future__ import annotations

import logging

from ..config import CudaSpec
from ..context import RunContext
from ..lib.command import run_cmd
from ..lib.pkg import apt_install, apt_update, dpkg_install
from ..models import Presence
from .base import BaseStep

logger = logging.getLogger(__name__)


class CudaToolkitStep(BaseStep):
    """NVIDIA apt keyring + CUDA toolkit (+ cuDNN) packages."""

    name = "cuda-toolkit"

    def __init__(self, cuda: CudaSpec) -> None:
        self.cuda = cuda
        self.mandatory = not cuda.optional

    def precondition(self, ctx: RunContext) -> Presence:
        if (self.cuda.home / "bin" / "nvcc").exists():
            return Presence.PRESENT
        return Presence.ABSENT

    def run(self, ctx: RunContext) -> str:
        keyring = ctx.config.work_dir / "cuda-keyring.deb"
        if not ctx.dry_run:
            keyring.parent.mkdir(parents=True, exist_ok=True)
        run_cmd(["wget", "-q", self.cuda.keyring_url, "-O", str(keyring)], dry_run=ctx.dry_run)
        dpkg_install(keyring, dry_run=ctx.dry_run)
        apt_update(dry_run=ctx.dry_run)
        apt_install(list(self.cuda.packages), dry_run=ctx.dry_run)

        if not ctx.dry_run and not (self.cuda.home / "bin" / "nvcc").exists():
            logger.warning("CUDA packages installed but %s/bin/nvcc is missing", self.cuda.home)
        return f"CUDA {self.cuda.version} at {self.cuda.home}"
