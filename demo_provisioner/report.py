from __future__ import annotations

import logging
import os
import shlex
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from .config import LauncherSpec
from .context import RunContext
from .models import RunReport, StepStatus
from .state_store import dump_document

logger = logging.getLogger(__name__)

_MARKS = {
    StepStatus.SKIPPED: "-",
    StepStatus.SUCCEEDED: "+",
    StepStatus.FAILED: "!",
}


def render_summary(report: RunReport, *, recipe: str) -> str:
    """Human-readable per-step outcome table."""

    width = max([len(r.step_name) for r in report.results] + [4])
    lines: List[str] = [f"Provisioning {recipe}: {report.status.value}"]
    for r in report.results:
        status = r.status.value
        if r.status == StepStatus.FAILED and not r.mandatory:
            status = "failed (optional)"
        elif r.recreated and r.status == StepStatus.SUCCEEDED:
            status = "succeeded (recreated)"
        line = f"  [{_MARKS[r.status]}] {r.step_name.ljust(width)}  {status}"
        if r.message and r.status != StepStatus.SKIPPED:
            first = r.message.strip().splitlines()[0] if r.message.strip() else ""
            line += f"  {first}"
        lines.append(line)
    counts = report.counts()
    lines.append(
        "  "
        + ", ".join(f"{counts[s.value]} {s.value}" for s in StepStatus)
    )
    if report.abort_reason:
        lines.append(f"  aborted: {report.abort_reason}")
    return "\n".join(lines) + "\n"


def report_document(report: RunReport, ctx: RunContext, *, launcher: Optional[Path] = None) -> Dict[str, Any]:
    doc = report.to_dict()
    doc.update(
        {
            "recipe": ctx.config.name,
            "finished_at": datetime.now(timezone.utc).isoformat(timespec="seconds"),
            "dry_run": ctx.dry_run,
            "target_dir": str(ctx.target_dir),
            "environment": {
                "manager": ctx.environment.manager,
                "name": ctx.environment.name,
                "path": str(ctx.environment.path),
                "python": ctx.environment.runtime_version,
            },
            "launcher": str(launcher) if launcher else None,
        }
    )
    return doc


def write_report(path: Path, report: RunReport, ctx: RunContext, *, launcher: Optional[Path] = None) -> None:
    dump_document(str(path), report_document(report, ctx, launcher=launcher))
    logger.info("Report written to %s", path)


def _activation_lines(ctx: RunContext) -> List[str]:
    env = ctx.environment
    if env.manager == "conda":
        conda = shlex.quote(str(ctx.conda_exe))
        return [
            f'eval "$({conda} shell.bash hook)"',
            f"conda activate {shlex.quote(env.name)}",
        ]
    if env.manager == "venv":
        return [f"source {shlex.quote(str(env.bin_dir / 'activate'))}"]
    return []


def render_launcher(ctx: RunContext, spec: LauncherSpec) -> str:
    """Shell launcher: activate the environment, cd into the app, run the command."""

    exports: List[tuple[str, str]] = []
    cuda = ctx.config.cuda
    if cuda is not None:
        exports += [
            ("CUDA_HOME", str(cuda.home)),
            ("PATH", "$CUDA_HOME/bin:$PATH"),
            ("LD_LIBRARY_PATH", "$CUDA_HOME/lib64:${LD_LIBRARY_PATH:-}"),
        ]
    exports += list(spec.env)

    lines = [
        "#!/usr/bin/env bash",
        f"# {ctx.config.name} launcher (generated by demo-provision)",
        "set -e",
        "",
    ]
    lines += _activation_lines(ctx)
    for key, value in exports:
        # Values may reference other variables; only double quotes keep that.
        escaped = value.replace("\\", "\\\\").replace('"', '\\"')
        lines.append(f'export {key}="{escaped}"')
    lines += [
        "",
        f"cd {shlex.quote(str(ctx.app_dir))}",
        f'exec {spec.command} "$@"',
        "",
    ]
    return "\n".join(lines)


def launcher_path(ctx: RunContext, spec: LauncherSpec) -> Path:
    p = Path(spec.filename).expanduser()
    return p if p.is_absolute() else ctx.target_dir / p


def emit_launcher(ctx: RunContext, spec: LauncherSpec) -> Path:
    """Write the launcher (mode 0755) unless an identical one is already there."""

    path = launcher_path(ctx, spec)
    content = render_launcher(ctx, spec)

    if ctx.dry_run:
        logger.info("Would write launcher %s:\n%s", path, content.rstrip("\n"))
        return path

    if path.exists() and path.read_text(encoding="utf-8") == content:
        logger.info("Launcher unchanged: %s", path)
        return path

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    os.chmod(path, 0o755)
    logger.info("Launcher written: %s", path)
    return path
