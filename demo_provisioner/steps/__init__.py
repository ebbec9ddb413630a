from __future__ import annotations

from typing import List

from ..context import RunContext
from ..models import Step
from .step_10_host_checks import HostChecksStep
from .step_20_system_packages import SystemPackagesStep
from .step_25_cuda_toolkit import CudaToolkitStep
from .step_30_runtime_manager import RuntimeManagerStep, ShellInitStep
from .step_40_environment import EnvironmentStep
from .step_50_source_tree import SourceTreeStep
from .step_60_dependencies import DependencyGroupStep
from .step_65_apply_patches import PatchStep
from .step_70_fetch_artifacts import ArtifactStep
from .step_80_verify import VerifyStep


def build_steps(ctx: RunContext) -> List[Step]:
    """Ordered steps for a recipe; sections the recipe omits add no step."""

    cfg = ctx.config
    steps: List[Step] = []

    if cfg.host_checks:
        steps.append(HostChecksStep(cfg.host_checks))
    if cfg.system_packages:
        steps.append(SystemPackagesStep(cfg.system_packages, optional=cfg.system_packages_optional))
    cuda = cfg.cuda
    if cuda is not None:
        steps.append(CudaToolkitStep(cuda))

    if ctx.runtime.manager != "none":
        steps.append(RuntimeManagerStep(ctx.runtime.on_exists))
        if ctx.runtime.manager == "conda" and ctx.runtime.init_shell:
            steps.append(ShellInitStep())
        steps.append(EnvironmentStep(ctx.environment.on_exists))

    source = cfg.source
    if source is not None:
        steps.append(SourceTreeStep(source))

    steps.extend(DependencyGroupStep(g) for g in ctx.environment.package_groups)
    steps.extend(PatchStep(p) for p in cfg.patches)
    steps.extend(ArtifactStep(a) for a in cfg.artifacts)

    verify = cfg.verify
    if not verify.empty:
        steps.append(VerifyStep(verify))
    return steps


__all__ = [
    "build_steps",
    "HostChecksStep",
    "SystemPackagesStep",
    "CudaToolkitStep",
    "RuntimeManagerStep",
    "ShellInitStep",
    "EnvironmentStep",
    "SourceTreeStep",
    "DependencyGroupStep",
    "PatchStep",
    "ArtifactStep",
    "VerifyStep",
]
