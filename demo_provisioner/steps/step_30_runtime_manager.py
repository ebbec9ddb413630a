from __future__ import annotations

import logging
from typing import Optional

from ..context import RunContext
from ..errors import ProvisionError
from ..lib.pkg import apt_install, apt_update
from ..lib.runtime import (
    conda_init_shell,
    conda_installed,
    find_python,
    install_miniconda,
    shell_init_present,
)
from ..models import OnExists, Presence
from .base import BaseStep, fingerprint_of, remove_tree

logger = logging.getLogger(__name__)


class RuntimeManagerStep(BaseStep):
    """Miniconda for ``conda`` recipes, a system interpreter for ``venv``."""

    name = "runtime-manager"

    def __init__(self, on_exists: str = "reuse") -> None:
        self.on_exists = OnExists(on_exists)

    def precondition(self, ctx: RunContext) -> Presence:
        if ctx.runtime.manager == "venv":
            found = find_python(ctx.environment.python_series)
            return Presence.PRESENT if found else Presence.ABSENT

        if conda_installed(ctx.conda_exe):
            return Presence.PRESENT
        if ctx.runtime.prefix.exists():
            # Directory without a working conda: a broken or interrupted install.
            return Presence.PARTIAL
        return Presence.ABSENT

    def describe_teardown(self, ctx: RunContext) -> str:
        return f"remove the conda installation at {ctx.runtime.prefix}"

    def teardown(self, ctx: RunContext) -> None:
        if ctx.runtime.manager != "conda":
            logger.info("System interpreter python%s is left in place", ctx.environment.python_series)
            return
        remove_tree(ctx.runtime.prefix)

    def run(self, ctx: RunContext) -> str:
        if ctx.runtime.manager == "venv":
            version = ctx.environment.python_series
            apt_update(dry_run=ctx.dry_run)
            apt_install([f"python{version}", f"python{version}-venv", "python3-pip"], dry_run=ctx.dry_run)
            return f"python{version} installed"

        install_miniconda(
            prefix=ctx.runtime.prefix,
            installer_url=ctx.runtime.installer_url,
            download_dir=ctx.config.work_dir,
            dry_run=ctx.dry_run,
        )
        if not ctx.dry_run and not conda_installed(ctx.conda_exe):
            raise ProvisionError(f"Miniconda installer finished but {ctx.conda_exe} is missing")
        return f"Miniconda installed at {ctx.runtime.prefix}"


class ShellInitStep(BaseStep):
    """Adds the ``conda init`` block to the operator's shell rc file once."""

    name = "shell-init"
    mandatory = False

    def precondition(self, ctx: RunContext) -> Presence:
        return Presence.PRESENT if shell_init_present(ctx.runtime.rc_file) else Presence.ABSENT

    def fingerprint(self, ctx: RunContext) -> Optional[str]:
        return fingerprint_of(str(ctx.runtime.prefix), str(ctx.runtime.rc_file))

    def run(self, ctx: RunContext) -> str:
        conda_init_shell(ctx.conda_exe, dry_run=ctx.dry_run)
        return f"conda initialized in {ctx.runtime.rc_file} (reload your shell)"
