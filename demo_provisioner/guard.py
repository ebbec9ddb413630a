from __future__ import annotations

import logging
import sys
from enum import Enum
from typing import Callable, Optional

from .context import RunContext
from .errors import DestructiveActionDeclined, PreconditionCheckError
from .models import OnExists, Presence, Step

logger = logging.getLogger(__name__)


class Decision(str, Enum):
    SKIP = "skip"
    RECREATE = "recreate"
    PROCEED = "proceed"
    REFUSE = "refuse"


def check_presence(step: Step, ctx: RunContext) -> Presence:
    """Run a step's precondition; an undeterminable state counts as absent."""

    try:
        presence = step.precondition(ctx)
        if not isinstance(presence, Presence):
            raise PreconditionCheckError(f"precondition returned {presence!r}")
        return presence
    except Exception as e:
        err = e if isinstance(e, PreconditionCheckError) else PreconditionCheckError(str(e))
        logger.warning("Precondition check for %s failed (%s); treating as absent", step.name, err)
        return Presence.ABSENT


def step_fingerprint(step: Step, ctx: RunContext) -> Optional[str]:
    """A step's ledger fingerprint; PreconditionCheckError when it cannot be computed."""

    try:
        return step.fingerprint(ctx)
    except Exception as e:
        raise PreconditionCheckError(f"fingerprint of {step.name}: {type(e).__name__}: {e}") from e


def decide(presence: Presence, on_exists: OnExists) -> Decision:
    if presence == Presence.ABSENT:
        return Decision.PROCEED
    recreate = OnExists(on_exists) == OnExists.RECREATE
    if presence == Presence.PARTIAL:
        # Incomplete state is only ever destroyed under the recreate policy.
        return Decision.RECREATE if recreate else Decision.REFUSE
    return Decision.RECREATE if recreate else Decision.SKIP


class ConfirmationGate:
    """Asks the operator before any existing state is destroyed.

    - ``assume_yes`` approves every prompt (``--yes``).
    - Without a terminal on stdin, prompts are declined.
    """

    def __init__(
        self,
        *,
        assume_yes: bool = False,
        interactive: Optional[bool] = None,
        prompt_fn: Callable[[str], str] = input,
    ) -> None:
        self.assume_yes = assume_yes
        self.interactive = sys.stdin.isatty() if interactive is None else interactive
        self.prompt_fn = prompt_fn

    def confirm(self, step_name: str, action: str) -> None:
        logger.warning("%s: about to %s (this cannot be undone)", step_name, action)
        if self.assume_yes:
            logger.info("%s: approved by --yes", step_name)
            return
        if not self.interactive:
            raise DestructiveActionDeclined(step_name, action)

        reply = self.prompt_fn(f"[{step_name}] {action}? This cannot be undone. (y/N) ")
        if reply.strip().lower() not in {"y", "yes"}:
            raise DestructiveActionDeclined(step_name, action)
        logger.info("%s: approved by operator", step_name)
