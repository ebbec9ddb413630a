from __future__ import annotations

from typing import Sequence


class ProvisionError(RuntimeError):
    pass


class ConfigError(ProvisionError):
    pass


class CommandError(ProvisionError):
    """An external command exited non-zero."""

    def __init__(self, argv: Sequence[str], returncode: int, stderr: str = "") -> None:
        self.argv = list(argv)
        self.returncode = returncode
        self.stderr = stderr
        detail = stderr.strip()
        msg = f"Command failed ({returncode}): {' '.join(self.argv)}"
        if detail:
            msg = f"{msg}\n{detail}"
        super().__init__(msg)


class PreconditionCheckError(ProvisionError):
    pass


class StepFailure(ProvisionError):
    def __init__(self, step_name: str, diagnostic: str) -> None:
        self.step_name = step_name
        self.diagnostic = diagnostic
        super().__init__(f"{step_name}: {diagnostic}")


class MandatoryStepFailure(StepFailure):
    pass


class OptionalStepFailure(StepFailure):
    pass


class ArtifactFetchFailure(ProvisionError):
    pass


class DestructiveActionDeclined(ProvisionError):
    def __init__(self, step_name: str, action: str) -> None:
        self.step_name = step_name
        self.action = action
        super().__init__(f"{step_name}: declined to {action}")


class PatchError(ProvisionError):
    pass
