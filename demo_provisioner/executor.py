from __future__ import annotations

import logging
import time

from .context import RunContext
from .errors import CommandError, DestructiveActionDeclined, MandatoryStepFailure, OptionalStepFailure, ProvisionError
from .guard import ConfirmationGate, Decision
from .models import Step, StepResult, StepStatus

logger = logging.getLogger(__name__)


def describe_teardown(step: Step, ctx: RunContext) -> str:
    describe = getattr(step, "describe_teardown", None)
    if callable(describe):
        return str(describe(ctx))
    return f"tear down existing state of {step.name}"


def _diagnostic(e: BaseException) -> str:
    if isinstance(e, CommandError):
        tail = "\n".join(e.stderr.strip().splitlines()[-20:])
        return f"{' '.join(e.argv)} exited {e.returncode}" + (f": {tail}" if tail else "")
    return f"{type(e).__name__}: {e}"


def execute(step: Step, ctx: RunContext, *, decision: Decision, gate: ConfirmationGate) -> StepResult:
    """Run one step's action (after teardown when recreating).

    - Mandatory failure raises MandatoryStepFailure.
    - Optional failure is returned as a ``failed`` result.
    - A declined confirmation raises DestructiveActionDeclined untouched.
    - Incomplete state under the reuse policy fails the step without touching it.
    """

    started = time.monotonic()
    recreated = decision == Decision.RECREATE

    try:
        if decision == Decision.REFUSE:
            raise ProvisionError(
                f"existing state is incomplete and on_exists is reuse; refusing to {describe_teardown(step, ctx)}. "
                "Set on_exists: recreate to rebuild it, or repair it by hand"
            )
        if recreated:
            action = describe_teardown(step, ctx)
            if ctx.dry_run:
                logger.info("[dry-run] %s: would %s", step.name, action)
            else:
                gate.confirm(step.name, action)
                step.teardown(ctx)

        message = step.run(ctx)
    except DestructiveActionDeclined:
        raise
    except Exception as e:
        diag = _diagnostic(e)
        if step.mandatory:
            logger.error("Mandatory step %s failed: %s", step.name, diag)
            raise MandatoryStepFailure(step.name, diag) from e
        failure = OptionalStepFailure(step.name, diag)
        logger.warning("Optional step failed, continuing: %s", failure)
        return StepResult(
            step_name=step.name,
            status=StepStatus.FAILED,
            message=diag,
            mandatory=False,
            recreated=recreated,
            duration_s=time.monotonic() - started,
        )

    logger.info("Step %s succeeded: %s", step.name, message)
    return StepResult(
        step_name=step.name,
        status=StepStatus.SUCCEEDED,
        message=message,
        mandatory=step.mandatory,
        recreated=recreated,
        duration_s=time.monotonic() - started,
    )
