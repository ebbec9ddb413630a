from __future__ import annotations

import logging

from ..config import ArtifactDescriptor
from ..context import RunContext
from ..lib.fetch import artifact_present, fetch_artifact
from ..models import Presence
from .base import BaseStep

logger = logging.getLogger(__name__)


class ArtifactStep(BaseStep):
    """Model weights and other large files; mandatory unless marked optional."""

    def __init__(self, artifact: ArtifactDescriptor) -> None:
        self.artifact = artifact
        self.name = f"artifact:{artifact.name}"
        self.mandatory = not artifact.optional

    def precondition(self, ctx: RunContext) -> Presence:
        return Presence.PRESENT if artifact_present(self.artifact) else Presence.ABSENT

    def run(self, ctx: RunContext) -> str:
        return fetch_artifact(self.artifact, env_bin=ctx.environment.bin_dir, dry_run=ctx.dry_run)
