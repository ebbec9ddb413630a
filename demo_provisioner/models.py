from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Protocol, Tuple

if TYPE_CHECKING:
    from .context import RunContext


class Presence(str, Enum):
    """What a precondition found on the host."""

    ABSENT = "absent"
    PARTIAL = "partial"
    PRESENT = "present"


class StepStatus(str, Enum):
    SKIPPED = "skipped"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class RunStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    ABORTED = "aborted"


class OnExists(str, Enum):
    REUSE = "reuse"
    RECREATE = "recreate"


class Step(Protocol):
    """A single idempotent provisioning step."""

    name: str
    mandatory: bool
    on_exists: OnExists

    def precondition(self, ctx: "RunContext") -> Presence:
        ...

    def run(self, ctx: "RunContext") -> str:
        ...

    def teardown(self, ctx: "RunContext") -> None:
        ...

    def fingerprint(self, ctx: "RunContext") -> Optional[str]:
        ...


@dataclass
class ProvisioningStep:
    """A step assembled from plain callables.

    ``action`` returns a short message (or None) and raises on failure.
    ``precondition`` must not mutate anything.
    """

    name: str
    action: Callable[["RunContext"], Optional[str]]
    precondition_fn: Optional[Callable[["RunContext"], Presence]] = None
    teardown_fn: Optional[Callable[["RunContext"], None]] = None
    mandatory: bool = True
    on_exists: OnExists = OnExists.REUSE
    fingerprint_value: Optional[str] = None

    def precondition(self, ctx: "RunContext") -> Presence:
        if self.precondition_fn is None:
            return Presence.ABSENT
        return self.precondition_fn(ctx)

    def run(self, ctx: "RunContext") -> str:
        return self.action(ctx) or "done"

    def teardown(self, ctx: "RunContext") -> None:
        if self.teardown_fn is None:
            raise NotImplementedError(f"{self.name} cannot tear down existing state")
        self.teardown_fn(ctx)

    def fingerprint(self, ctx: "RunContext") -> Optional[str]:
        return self.fingerprint_value


@dataclass(frozen=True)
class StepResult:
    step_name: str
    status: StepStatus
    message: str = ""
    mandatory: bool = True
    recreated: bool = False
    duration_s: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "step": self.step_name,
            "status": self.status.value,
            "message": self.message,
            "mandatory": self.mandatory,
            "recreated": self.recreated,
            "duration_s": round(self.duration_s, 3),
        }


@dataclass
class RunReport:
    results: List[StepResult] = field(default_factory=list)
    status: RunStatus = RunStatus.PENDING
    abort_reason: Optional[str] = None
    declined: bool = False

    @property
    def succeeded(self) -> bool:
        return self.status == RunStatus.COMPLETED

    @property
    def exit_code(self) -> int:
        if self.status == RunStatus.COMPLETED:
            return 0
        if self.declined:
            return 3
        return 1

    def counts(self) -> Dict[str, int]:
        out = {s.value: 0 for s in StepStatus}
        for r in self.results:
            out[r.status.value] += 1
        return out

    def statuses(self) -> List[Tuple[str, StepStatus]]:
        return [(r.step_name, r.status) for r in self.results]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "abort_reason": self.abort_reason,
            "declined": self.declined,
            "counts": self.counts(),
            "steps": [r.to_dict() for r in self.results],
        }
