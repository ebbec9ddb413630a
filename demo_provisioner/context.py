from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass
from pathlib import Path

from .config import EnvironmentSpec, ProvisionConfig, RuntimeSpec
from .lib.command import which

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RunContext:
    """Resolved paths and names shared by every step of one run.

    Steps receive this object instead of relying on the process environment
    or the working directory.
    """

    config: ProvisionConfig
    runtime: RuntimeSpec
    environment: EnvironmentSpec
    target_dir: Path
    app_dir: Path
    dry_run: bool = False

    @property
    def conda_exe(self) -> Path:
        return self.runtime.prefix / "bin" / "conda"

    @classmethod
    def from_config(cls, config: ProvisionConfig, *, dry_run: bool = False) -> "RunContext":
        runtime = config.runtime
        environment = config.environment

        # An existing conda on PATH wins over a missing default prefix.
        if runtime.manager == "conda" and not runtime.prefix.exists():
            found = which("conda")
            if found:
                base = Path(found).resolve().parent.parent
                logger.info("Using conda found on PATH (base=%s)", base)
                runtime = dataclasses.replace(runtime, prefix=base)
                environment = dataclasses.replace(environment, path=base / "envs" / environment.name)

        return cls(
            config=config,
            runtime=runtime,
            environment=environment,
            target_dir=config.target_dir,
            app_dir=config.app_dir,
            dry_run=dry_run,
        )
