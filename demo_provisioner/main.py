from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Optional

from . import __version__
from .config import ProvisionConfig, bundled_recipes, load_config
from .context import RunContext
from .errors import ConfigError
from .guard import ConfirmationGate
from .logging_utils import configure_logging
from .models import RunReport, RunStatus
from .pipeline import StepRegistry
from .report import emit_launcher, render_summary, write_report
from .state_store import ensure_defaults, load_state, record_error, save_state
from .steps import build_steps

logger = logging.getLogger(__name__)

EXIT_CONFIG_ERROR = 2


def _load(args: argparse.Namespace) -> ProvisionConfig:
    cfg = load_config(args.recipe).with_overrides(
        target_dir=args.target,
        env_name=args.env_name,
        python=args.python,
    )
    return cfg.validate()


def run(
    cfg: ProvisionConfig,
    *,
    state_path: Optional[str] = None,
    log_path: Optional[str] = None,
    report_path: Optional[str] = None,
    start_at: Optional[str] = None,
    stop_after: Optional[str] = None,
    skip_optional: bool = False,
    dry_run: bool = False,
    gate: Optional[ConfirmationGate] = None,
    verbose: bool = False,
) -> RunReport:
    """Provision one recipe, persisting state after every step."""

    actual_log_path = configure_logging(
        log_path=log_path or str(cfg.log_path),
        level=logging.DEBUG if verbose else logging.INFO,
    )

    state_file = state_path or str(cfg.state_path)
    state = ensure_defaults(load_state(state_file), recipe=cfg.name)
    state["execution"]["log_path"] = actual_log_path

    ctx = RunContext.from_config(cfg, dry_run=dry_run)
    registry = StepRegistry(
        build_steps(ctx),
        ctx=ctx,
        gate=gate or ConfirmationGate(),
        state=state,
        state_path=state_file,
        start_at=start_at,
        stop_after=stop_after,
        skip_optional=skip_optional,
    )
    logger.info("Provisioning %s into %s (dry_run=%s)", cfg.name, ctx.target_dir, dry_run)

    try:
        report = registry.run_all()
    except Exception as e:
        logger.exception("Provisioning failed")
        record_error(state, state["execution"].get("current_step"), str(e))
        raise
    finally:
        if not dry_run:
            save_state(state_file, state)

    launcher = None
    launcher_spec = cfg.launcher
    if launcher_spec is not None and report.status == RunStatus.COMPLETED:
        launcher = emit_launcher(ctx, launcher_spec)

    summary = render_summary(report, recipe=cfg.name)
    logger.info("Run finished:\n%s", summary.rstrip("\n"))
    sys.stdout.write(summary)
    if launcher is not None:
        sys.stdout.write(f"Launcher: {launcher}\n")

    if not dry_run:
        write_report(Path(report_path) if report_path else cfg.report_path, report, ctx, launcher=launcher)
        state["execution"]["last_run"] = report.to_dict()
        save_state(state_file, state)
    return report


def cmd_run(args: argparse.Namespace) -> int:
    cfg = _load(args)
    report = run(
        cfg,
        state_path=args.state,
        log_path=args.log,
        report_path=args.report,
        start_at=args.start_at,
        stop_after=args.stop_after,
        skip_optional=bool(args.skip_optional),
        dry_run=bool(args.dry_run),
        gate=ConfirmationGate(assume_yes=bool(args.yes)),
        verbose=bool(args.verbose),
    )
    return report.exit_code


def cmd_plan(args: argparse.Namespace) -> int:
    cfg = _load(args)
    ctx = RunContext.from_config(cfg, dry_run=True)
    state = ensure_defaults(load_state(args.state or str(cfg.state_path)))
    registry = StepRegistry(build_steps(ctx), ctx=ctx, state=state)

    print(f"Plan for {cfg.name} (target {ctx.target_dir}):")
    for planned in registry.plan():
        kind = "mandatory" if planned.step.mandatory else "optional"
        print(f"  {planned.step.name:<28} {kind:<9} {planned.presence.value:<8} -> {planned.decision.value}")
    return 0


def cmd_recipes(args: argparse.Namespace) -> int:
    for name in bundled_recipes():
        print(name)
    return 0


def _add_recipe_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("recipe", help="Recipe YAML path or bundled recipe name")
    p.add_argument("--target", default=None, help="Override target directory")
    p.add_argument("--env-name", default=None, help="Override environment name")
    p.add_argument("--python", default=None, help="Override environment Python version")
    p.add_argument("--state", default=None, help="Path to run state (json|yaml)")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="demo-provision", description="Idempotent ML demo provisioning")
    p.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    sub = p.add_subparsers(dest="command", required=True)

    r = sub.add_parser("run", help="Provision a recipe")
    _add_recipe_args(r)
    r.add_argument("--log", default=None, help="Path to provisioning log")
    r.add_argument("--report", default=None, help="Path to run report (json|yaml)")
    r.add_argument("--start-at", default=None, help="Start at step name (e.g. deps:torch)")
    r.add_argument("--stop-after", default=None, help="Stop after step name")
    r.add_argument("--skip-optional", action="store_true", help="Do not attempt optional steps")
    r.add_argument("--dry-run", action="store_true", help="Log commands without executing them")
    r.add_argument("--yes", "-y", action="store_true", help="Approve destructive recreation prompts")
    r.add_argument("--verbose", "-v", action="store_true", help="Log command output")
    r.set_defaults(func=cmd_run)

    pl = sub.add_parser("plan", help="Show what a run would do")
    _add_recipe_args(pl)
    pl.set_defaults(func=cmd_plan)

    rc = sub.add_parser("recipes", help="List bundled recipes")
    rc.set_defaults(func=cmd_recipes)
    return p


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        return int(args.func(args))
    except ConfigError as e:
        print(f"demo-provision: {e}", file=sys.stderr)
        return EXIT_CONFIG_ERROR


if __name__ == "__main__":
    raise SystemExit(main())
