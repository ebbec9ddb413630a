from __future__ import annotations

import difflib
import logging
from dataclasses import dataclass
from enum import Enum
from typing import List, Literal, Optional, Tuple

from ..errors import PatchError
from .workspace import SourceTree

logger = logging.getLogger(__name__)

PatchOp = Literal["add", "update"]


class PatchState(str, Enum):
    APPLIED = "applied"
    APPLICABLE = "applicable"
    CONFLICT = "conflict"


@dataclass(frozen=True)
class FilePatch:
    op: PatchOp
    path: str
    # "add": full content. "update": hunks as (old_text, new_text) pairs.
    content: str = ""
    hunks: Tuple[Tuple[str, str], ...] = ()


def _join(lines: List[str]) -> str:
    return "\n".join(lines) + ("\n" if lines else "")


def _parse_add(path: str, body: List[str]) -> FilePatch:
    content_lines: List[str] = []
    for ln in body:
        if not ln.startswith("+"):
            raise PatchError(f"Add File body must use '+' lines only ({path})")
        content_lines.append(ln[1:])
    return FilePatch(op="add", path=path, content=_join(content_lines))


def _parse_update(path: str, body: List[str]) -> FilePatch:
    hunks: List[Tuple[str, str]] = []
    old_lines: List[str] = []
    new_lines: List[str] = []
    in_hunk = False
    saw_change = False

    def flush() -> None:
        nonlocal old_lines, new_lines, in_hunk, saw_change
        if in_hunk and saw_change:
            hunks.append((_join(old_lines), _join(new_lines)))
        old_lines, new_lines = [], []
        in_hunk = False
        saw_change = False

    for ln in body:
        if ln.startswith("@@"):
            flush()
            in_hunk = True
            continue
        if not in_hunk:
            if not ln.strip():
                continue
            raise PatchError(f"Update hunks must start with '@@' ({path})")
        if ln.startswith(" ") or ln == "":
            old_lines.append(ln[1:])
            new_lines.append(ln[1:])
        elif ln.startswith("-"):
            old_lines.append(ln[1:])
            saw_change = True
        elif ln.startswith("+"):
            new_lines.append(ln[1:])
            saw_change = True
        else:
            raise PatchError(f"Invalid hunk line prefix (expected ' ', '+', '-') in {path}")
    flush()
    if not hunks:
        raise PatchError(f"No applicable hunks found for {path}")
    return FilePatch(op="update", path=path, hunks=tuple(hunks))


def parse_patch(text: str) -> List[FilePatch]:
    """Parse a reviewable patch file.

    Format::

        *** Begin Patch
        *** Add File: rel/path.py
        +line
        *** Update File: rel/other.py
        @@
         context
        -old
        +new
        *** End Patch

    Each update hunk is applied by locating its old block (which must be
    unique in the file) and replacing it with the new block.
    """

    lines = text.splitlines()
    if not lines or lines[0].strip() != "*** Begin Patch":
        raise PatchError("Patch must start with '*** Begin Patch'")
    if lines[-1].strip() != "*** End Patch":
        raise PatchError("Patch must end with '*** End Patch'")

    patches: List[FilePatch] = []
    header: Optional[str] = None
    body: List[str] = []

    def close() -> None:
        if header is None:
            return
        kind, _, path = header.partition(":")
        path = path.strip()
        if not path:
            raise PatchError(f"Missing path in header: {header}")
        if kind == "*** Add File":
            patches.append(_parse_add(path, body))
        elif kind == "*** Update File":
            patches.append(_parse_update(path, body))
        else:
            raise PatchError(f"Unknown patch header: {header}")

    for ln in lines[1:-1]:
        if ln.startswith("*** "):
            close()
            header = ln.strip()
            body = []
        elif header is None:
            if ln.strip():
                raise PatchError("Missing patch header (Add File / Update File)")
        else:
            body.append(ln)
    close()

    if not patches:
        raise PatchError("Patch contains no file sections")
    return patches


def _patched_text(original: str, fp: FilePatch) -> str:
    cur = original
    for old, new in fp.hunks:
        idx = cur.find(old)
        if idx == -1:
            raise PatchError(f"Failed to apply hunk: old block not found in {fp.path}")
        if cur.find(old, idx + 1) != -1:
            raise PatchError(f"Failed to apply hunk: old block not unique in {fp.path}")
        cur = cur.replace(old, new, 1)
    return cur


def file_patch_state(tree: SourceTree, fp: FilePatch) -> PatchState:
    if fp.op == "add":
        if not tree.exists(fp.path):
            return PatchState.APPLICABLE
        return PatchState.APPLIED if tree.read_text(fp.path) == fp.content else PatchState.CONFLICT

    if not tree.exists(fp.path):
        return PatchState.CONFLICT
    text = tree.read_text(fp.path)
    if all(new in text and (old not in text or old in new) for old, new in fp.hunks):
        return PatchState.APPLIED
    try:
        _patched_text(text, fp)
    except PatchError:
        return PatchState.CONFLICT
    return PatchState.APPLICABLE


def patch_state(tree: SourceTree, patches: List[FilePatch]) -> PatchState:
    states = [file_patch_state(tree, fp) for fp in patches]
    if all(s == PatchState.APPLIED for s in states):
        return PatchState.APPLIED
    if any(s == PatchState.CONFLICT for s in states):
        return PatchState.CONFLICT
    return PatchState.APPLICABLE


def render_diff(tree: SourceTree, fp: FilePatch) -> str:
    """Unified diff of what applying ``fp`` would change."""

    before = tree.read_text(fp.path) if tree.exists(fp.path) else ""
    after = fp.content if fp.op == "add" else _patched_text(before, fp)
    return "".join(
        difflib.unified_diff(
            before.splitlines(keepends=True),
            after.splitlines(keepends=True),
            fromfile=f"a/{fp.path}",
            tofile=f"b/{fp.path}",
        )
    )


def apply_file_patch(tree: SourceTree, fp: FilePatch, *, dry_run: bool = False) -> None:
    if file_patch_state(tree, fp) == PatchState.APPLIED:
        logger.info("Patch already applied: %s", fp.path)
        return

    diff = render_diff(tree, fp)
    logger.info("Patch %s:\n%s", fp.path, diff.rstrip("\n"))
    if dry_run:
        return

    if fp.op == "add":
        if tree.exists(fp.path):
            raise PatchError(f"File already exists with different content: {fp.path}")
        tree.write_text(fp.path, fp.content)
        return

    tree.write_text(fp.path, _patched_text(tree.read_text(fp.path), fp))
