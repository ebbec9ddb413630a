from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from ..context import RunContext
from ..errors import ProvisionError
from ..lib.command import which
from ..lib.hostcheck import probe_host
from .base import BaseStep, fingerprint_of

logger = logging.getLogger(__name__)


class HostChecksStep(BaseStep):
    """GPU/CUDA and required-command checks.

    Hard requirements fail the step; soft expectations (CUDA release, GPU
    memory, OS family) only warn.
    """

    name = "host-checks"

    def __init__(self, checks: Dict[str, Any]) -> None:
        self.checks = checks
        self.mandatory = bool(checks.get("mandatory", True))

    def fingerprint(self, ctx: RunContext) -> Optional[str]:
        return fingerprint_of(self.checks, probe_host(), self._missing_commands())

    def _missing_commands(self) -> List[str]:
        commands = [str(c) for c in (self.checks.get("commands") or [])]
        return [c for c in commands if which(c) is None]

    def run(self, ctx: RunContext) -> str:
        host = probe_host()
        problems: List[str] = []
        notes: List[str] = []

        if host["root"]:
            logger.warning("Running as root; created files will be owned by root")

        want_os = self.checks.get("os_id")
        if want_os and host["os_id"] and host["os_id"] != want_os:
            logger.warning("Designed for %s, this host is %s", want_os, host["os_id"])

        missing = self._missing_commands()
        if missing:
            problems.append(f"missing commands: {', '.join(missing)}")

        if self.checks.get("require_gpu") and not host["nvidia_smi"]:
            problems.append("nvidia-smi not found (install NVIDIA drivers first)")

        want_cuda = self.checks.get("cuda_version")
        if want_cuda:
            have = host["nvcc_version"]
            if have is None:
                logger.warning("nvcc not found; expected CUDA %s", want_cuda)
            elif str(have) != str(want_cuda):
                logger.warning("CUDA version is %s, expected %s; proceeding", have, want_cuda)
            notes.append(f"cuda={have or 'none'}")

        min_mem = self.checks.get("min_gpu_memory_mb")
        if min_mem and host["gpu_memory_mb"]:
            best = max(host["gpu_memory_mb"])
            if best < int(min_mem):
                logger.warning("GPU has %sMB memory; %sMB recommended", best, min_mem)
            notes.append(f"gpu_mem={best}MB")

        if problems:
            raise ProvisionError("; ".join(problems))
        return "host ok" + (f" ({', '.join(notes)})" if notes else "")
