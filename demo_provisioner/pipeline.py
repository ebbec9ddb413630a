from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from .context import RunContext
from .errors import ConfigError, DestructiveActionDeclined, MandatoryStepFailure, PreconditionCheckError
from .executor import execute
from .guard import ConfirmationGate, Decision, check_presence, decide, step_fingerprint
from .models import Presence, RunReport, RunStatus, Step, StepResult, StepStatus
from .state_store import (
    ensure_defaults,
    invalidate_steps,
    is_step_completed,
    mark_step_completed,
    record_error,
    save_state,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PlannedStep:
    step: Step
    presence: Presence
    decision: Decision


class StepRegistry:
    """Ordered provisioning steps with resume/idempotency semantics.

    Steps run strictly in order on the calling thread. The first failed
    mandatory step (or a declined confirmation) aborts the run; no later
    step executes.
    """

    def __init__(
        self,
        steps: Sequence[Step],
        *,
        ctx: RunContext,
        gate: Optional[ConfirmationGate] = None,
        state: Optional[Dict[str, Any]] = None,
        state_path: Optional[str] = None,
        start_at: Optional[str] = None,
        stop_after: Optional[str] = None,
        skip_optional: bool = False,
    ) -> None:
        names = [s.name for s in steps]
        if len(set(names)) != len(names):
            raise ConfigError(f"Duplicate step names: {names}")
        for label, wanted in (("start_at", start_at), ("stop_after", stop_after)):
            if wanted is not None and wanted not in names:
                raise ConfigError(f"{label}: unknown step {wanted!r} (steps: {', '.join(names)})")

        self.steps = list(steps)
        self.ctx = ctx
        self.gate = gate or ConfirmationGate()
        self.state = ensure_defaults(state if state is not None else {})
        self.state_path = state_path
        self.start_at = start_at
        self.stop_after = stop_after
        self.skip_optional = skip_optional
        self.status = RunStatus.PENDING

    @property
    def names(self) -> List[str]:
        return [s.name for s in self.steps]

    def _selected(self) -> List[Step]:
        out: List[Step] = []
        started = self.start_at is None
        for step in self.steps:
            if not started:
                if step.name == self.start_at:
                    started = True
                else:
                    continue
            out.append(step)
            if self.stop_after is not None and step.name == self.stop_after:
                break
        return out

    def _presence(self, step: Step) -> Presence:
        try:
            fingerprint = step_fingerprint(step, self.ctx)
        except PreconditionCheckError as e:
            logger.warning("Precondition check for %s failed (%s); treating as absent", step.name, e)
            return Presence.ABSENT
        if fingerprint is not None and is_step_completed(self.state, step.name, fingerprint):
            return Presence.PRESENT
        return check_presence(step, self.ctx)

    def plan(self) -> List[PlannedStep]:
        """Guard decisions for every selected step; nothing is executed."""

        planned: List[PlannedStep] = []
        for step in self._selected():
            presence = self._presence(step)
            planned.append(PlannedStep(step=step, presence=presence, decision=decide(presence, step.on_exists)))
        return planned

    def _persist(self) -> None:
        if self.state_path and not self.ctx.dry_run:
            save_state(self.state_path, self.state)

    def _after_action(self, step: Step, result: StepResult) -> None:
        if self.ctx.dry_run:
            return
        later = self.names[self.names.index(step.name) + 1 :]
        invalidate_steps(self.state, later)
        if result.status != StepStatus.SUCCEEDED:
            return
        try:
            fingerprint = step_fingerprint(step, self.ctx)
        except PreconditionCheckError as e:
            logger.warning("Not recording %s as completed: %s", step.name, e)
            return
        mark_step_completed(self.state, step.name, fingerprint)

    def run_all(self) -> RunReport:
        report = RunReport(status=RunStatus.RUNNING)
        self.status = RunStatus.RUNNING
        exe = self.state.setdefault("execution", {})

        for step in self._selected():
            exe["current_step"] = step.name

            if self.skip_optional and not step.mandatory:
                logger.info("Skipping optional step %s (--skip-optional)", step.name)
                report.results.append(
                    StepResult(step.name, StepStatus.SKIPPED, "optional step disabled", mandatory=False)
                )
                continue

            presence = self._presence(step)
            decision = decide(presence, step.on_exists)
            logger.info("Step %s: %s -> %s", step.name, presence.value, decision.value)

            if decision == Decision.SKIP:
                report.results.append(
                    StepResult(step.name, StepStatus.SKIPPED, "already satisfied", mandatory=step.mandatory)
                )
                continue

            try:
                result = execute(step, self.ctx, decision=decision, gate=self.gate)
            except MandatoryStepFailure as e:
                report.results.append(
                    StepResult(step.name, StepStatus.FAILED, e.diagnostic, mandatory=True,
                               recreated=decision == Decision.RECREATE)
                )
                record_error(self.state, step.name, e.diagnostic)
                report.status = RunStatus.ABORTED
                report.abort_reason = str(e)
                break
            except DestructiveActionDeclined as e:
                report.results.append(
                    StepResult(step.name, StepStatus.FAILED, str(e), mandatory=step.mandatory)
                )
                record_error(self.state, step.name, str(e))
                report.status = RunStatus.ABORTED
                report.abort_reason = str(e)
                report.declined = True
                logger.warning("Run aborted: %s", e)
                break

            if result.status == StepStatus.FAILED:
                record_error(self.state, step.name, result.message)
            self._after_action(step, result)
            report.results.append(result)
            self._persist()

        if report.status == RunStatus.RUNNING:
            report.status = RunStatus.COMPLETED
        self.status = report.status
        exe["current_step"] = None
        exe["status"] = report.status.value
        self._persist()
        return report
