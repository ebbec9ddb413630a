from __future__ import annotations

import logging
from typing import List

from ..config import PatchSpec
from ..context import RunContext
from ..errors import PreconditionCheckError
from ..lib.patch import FilePatch, PatchState, apply_file_patch, parse_patch, patch_state
from ..lib.workspace import SourceTree
from ..models import Presence
from .base import BaseStep

logger = logging.getLogger(__name__)


class PatchStep(BaseStep):
    """Applies a reviewable patch file to the source tree.

    The unified diff of every change is written to the log before the file
    is touched.
    """

    def __init__(self, spec: PatchSpec) -> None:
        self.spec = spec
        self.name = f"patch:{spec.name}"
        self.mandatory = not spec.optional

    def _patches(self) -> List[FilePatch]:
        return parse_patch(self.spec.file.read_text(encoding="utf-8"))

    def precondition(self, ctx: RunContext) -> Presence:
        if not ctx.app_dir.exists():
            return Presence.ABSENT
        state = patch_state(SourceTree.at(ctx.app_dir), self._patches())
        if state == PatchState.APPLIED:
            return Presence.PRESENT
        if state == PatchState.CONFLICT:
            raise PreconditionCheckError(f"{self.spec.file.name} does not apply cleanly")
        return Presence.ABSENT

    def run(self, ctx: RunContext) -> str:
        patches = self._patches()
        if ctx.dry_run and not ctx.app_dir.exists():
            for fp in patches:
                logger.info("Would patch %s (%s)", fp.path, fp.op)
            return f"{len(patches)} file(s) would be patched"

        tree = SourceTree.at(ctx.app_dir)
        for fp in patches:
            apply_file_patch(tree, fp, dry_run=ctx.dry_run)
        return f"patched {', '.join(fp.path for fp in patches)}"
