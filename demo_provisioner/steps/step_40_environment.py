from __future__ import annotations

import logging

from ..context import RunContext
from ..errors import ProvisionError
from ..lib.runtime import (
    conda_create,
    conda_env_exists,
    conda_remove,
    env_python_version,
    find_python,
    venv_create,
)
from ..models import OnExists, Presence
from .base import BaseStep, remove_tree

logger = logging.getLogger(__name__)


class EnvironmentStep(BaseStep):
    """Named, isolated interpreter environment (conda env or venv)."""

    name = "environment"

    def __init__(self, on_exists: str = "recreate") -> None:
        self.on_exists = OnExists(on_exists)

    def precondition(self, ctx: RunContext) -> Presence:
        env = ctx.environment
        if env.manager == "conda":
            exists = conda_env_exists(ctx.conda_exe, env.name, env.path)
        else:
            exists = env.path.exists()
        if not exists:
            return Presence.ABSENT

        have = env_python_version(env.python)
        if have is None:
            return Presence.PARTIAL
        wanted = env.python_series
        if have != wanted:
            logger.info("Environment %s has python %s, wanted %s", env.name, have, env.runtime_version)
            return Presence.PARTIAL
        return Presence.PRESENT

    def describe_teardown(self, ctx: RunContext) -> str:
        env = ctx.environment
        if env.manager == "conda":
            return f"remove conda environment '{env.name}' and everything installed in it"
        return f"delete virtual environment at {env.path}"

    def teardown(self, ctx: RunContext) -> None:
        env = ctx.environment
        if env.manager == "conda" and ctx.conda_exe.exists():
            conda_remove(ctx.conda_exe, env.name, dry_run=ctx.dry_run)
        # conda leaves the directory behind when the env was never registered.
        if env.path.exists():
            remove_tree(env.path)

    def run(self, ctx: RunContext) -> str:
        env = ctx.environment
        if env.manager == "conda":
            conda_create(ctx.conda_exe, env.name, env.runtime_version, dry_run=ctx.dry_run)
        else:
            python = find_python(env.python_series)
            if python is None:
                if not ctx.dry_run:
                    raise ProvisionError(f"python{env.python_series} not found")
                python = f"python{env.python_series}"
            venv_create(python, env.path, dry_run=ctx.dry_run)
        return f"{env.manager} environment '{env.name}' (python {env.runtime_version}) at {env.path}"
