from __future__ import annotations

import logging
from typing import Sequence

from ..context import RunContext
from ..errors import PreconditionCheckError, ProvisionError
from ..lib.pkg import apt_available, apt_install, apt_update, missing_packages
from ..models import Presence
from .base import BaseStep

logger = logging.getLogger(__name__)


class SystemPackagesStep(BaseStep):
    name = "system-packages"

    def __init__(self, packages: Sequence[str], *, optional: bool = False) -> None:
        self.packages = list(packages)
        self.mandatory = not optional

    def precondition(self, ctx: RunContext) -> Presence:
        if not apt_available():
            raise PreconditionCheckError("apt-get/dpkg-query not available")
        return Presence.ABSENT if missing_packages(self.packages) else Presence.PRESENT

    def run(self, ctx: RunContext) -> str:
        if not apt_available() and not ctx.dry_run:
            raise ProvisionError("apt-get is required to install system packages")

        # Only what dpkg does not already report as installed.
        todo = self.packages if ctx.dry_run else missing_packages(self.packages)
        apt_update(dry_run=ctx.dry_run)
        apt_install(todo, dry_run=ctx.dry_run)
        return f"installed {len(todo)} package(s)"
