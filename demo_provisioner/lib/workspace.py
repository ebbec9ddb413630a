from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Union

from ..errors import PatchError

PathLike = Union[str, Path]


class PathOutsideTree(PatchError):
    """A patch named a file outside the source tree it applies to."""


@dataclass(frozen=True)
class SourceTree:
    """File access confined to one checked-out source tree."""

    root: Path

    @classmethod
    def at(cls, root: PathLike) -> "SourceTree":
        return cls(root=Path(os.path.realpath(Path(root).expanduser())))

    def path(self, rel: PathLike) -> Path:
        if Path(rel).is_absolute():
            raise PathOutsideTree(f"patch paths must be relative to the source tree: {rel}")
        full = Path(os.path.realpath(self.root / rel))
        if os.path.commonpath([str(self.root), str(full)]) != str(self.root):
            raise PathOutsideTree(f"{rel} resolves outside {self.root}")
        return full

    def exists(self, rel: PathLike) -> bool:
        return self.path(rel).exists()

    def read_text(self, rel: PathLike) -> str:
        return self.path(rel).read_text(encoding="utf-8")

    def write_text(self, rel: PathLike, content: str) -> None:
        """Replace a file in one step, keeping the mode of the file it replaces."""

        target = self.path(rel)
        target.parent.mkdir(parents=True, exist_ok=True)
        tmp = target.with_name(f".{target.name}.patching")
        tmp.write_text(content, encoding="utf-8")
        if target.exists():
            os.chmod(tmp, target.stat().st_mode & 0o7777)
        os.replace(tmp, target)
