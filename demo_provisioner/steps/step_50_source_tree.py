from __future__ import annotations

import logging

from ..config import SourceSpec
from ..context import RunContext
from ..lib import git
from ..models import OnExists, Presence
from .base import BaseStep, remove_tree

logger = logging.getLogger(__name__)


class SourceTreeStep(BaseStep):
    name = "source-tree"

    def __init__(self, source: SourceSpec) -> None:
        self.source = source
        self.on_exists = OnExists(source.on_exists)

    def precondition(self, ctx: RunContext) -> Presence:
        path = self.source.path
        if not path.exists() or (path.is_dir() and not any(path.iterdir())):
            return Presence.ABSENT
        if not git.is_checkout(path):
            return Presence.PARTIAL
        remote = git.remote_url(path)
        if remote is None or not git.same_remote(remote, self.source.repo):
            logger.info("%s is a checkout of %s, wanted %s", path, remote, self.source.repo)
            return Presence.PARTIAL
        return Presence.PRESENT

    def describe_teardown(self, ctx: RunContext) -> str:
        return f"delete {self.source.path} and clone {self.source.repo} fresh"

    def teardown(self, ctx: RunContext) -> None:
        remove_tree(self.source.path)

    def run(self, ctx: RunContext) -> str:
        git.clone(
            self.source.repo,
            self.source.path,
            ref=self.source.ref,
            submodules=self.source.submodules,
            dry_run=ctx.dry_run,
        )
        if self.source.lfs:
            git.lfs_pull(self.source.path, dry_run=ctx.dry_run)
        return f"cloned {self.source.repo} -> {self.source.path}"
