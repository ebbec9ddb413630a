from __future__ import annotations

import hashlib
import json
import logging
import shutil
from pathlib import Path
from typing import Any, Optional

from ..context import RunContext
from ..models import OnExists, Presence

logger = logging.getLogger(__name__)


def fingerprint_of(*parts: Any) -> str:
    blob = json.dumps(parts, sort_keys=True, default=str).encode("utf-8")
    return hashlib.sha256(blob).hexdigest()


def remove_tree(path: Path) -> None:
    if path.is_symlink() or path.is_file():
        path.unlink()
    elif path.exists():
        shutil.rmtree(path)
    logger.info("Removed %s", path)


class BaseStep:
    """Defaults for class-based steps: no teardown, no fingerprint."""

    name = ""
    mandatory = True
    on_exists = OnExists.REUSE

    def precondition(self, ctx: RunContext) -> Presence:
        return Presence.ABSENT

    def run(self, ctx: RunContext) -> str:
        raise NotImplementedError

    def teardown(self, ctx: RunContext) -> None:
        raise NotImplementedError(f"{self.name} cannot tear down existing state")

    def fingerprint(self, ctx: RunContext) -> Optional[str]:
        return None

    def __repr__(self) -> str:
        kind = "mandatory" if self.mandatory else "optional"
        return f"<{type(self).__name__} {self.name} ({kind})>"
