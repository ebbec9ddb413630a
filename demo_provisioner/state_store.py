from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

import yaml

logger = logging.getLogger(__name__)

STATE_VERSION = 1


def _detect_format(path: Path) -> str:
    ext = path.suffix.lower().lstrip(".")
    if ext in {"json", "yaml", "yml"}:
        return ext
    # Default to JSON for unknown extensions.
    return "json"


def load_document(path: str) -> Dict[str, Any]:
    """Load a JSON/YAML mapping; a missing file reads as an empty mapping."""

    p = Path(path)
    if not p.exists():
        return {}

    text = p.read_text(encoding="utf-8")
    if _detect_format(p) in {"yaml", "yml"}:
        data = yaml.safe_load(text) or {}
    else:
        data = json.loads(text) if text.strip() else {}

    if not isinstance(data, dict):
        raise ValueError(f"{p} must contain an object/dict, got {type(data).__name__}")
    return data


def dump_document(path: str, data: Dict[str, Any]) -> None:
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)

    if _detect_format(p) in {"yaml", "yml"}:
        p.write_text(yaml.safe_dump(data, sort_keys=False), encoding="utf-8")
    else:
        p.write_text(json.dumps(data, indent=2, sort_keys=True) + "\n", encoding="utf-8")


def load_state(path: str) -> Dict[str, Any]:
    return load_document(path)


def save_state(path: str, state: Dict[str, Any]) -> None:
    dump_document(path, state)


def ensure_defaults(state: Dict[str, Any], *, recipe: Optional[str] = None) -> Dict[str, Any]:
    """Fill required keys with defaults (without overriding recorded values)."""

    state.setdefault("version", STATE_VERSION)
    if recipe is not None:
        state["recipe"] = recipe
    exe = state.setdefault("execution", {})
    exe.setdefault("current_step", None)
    exe.setdefault("completed_steps", {})
    exe.setdefault("errors", [])

    # Older state files stored a plain list of step names.
    if isinstance(exe["completed_steps"], list):
        exe["completed_steps"] = {name: None for name in exe["completed_steps"]}
    return state


def mark_step_completed(state: Dict[str, Any], step_name: str, fingerprint: Optional[str]) -> None:
    exe = state.setdefault("execution", {})
    completed = exe.setdefault("completed_steps", {})
    completed[step_name] = fingerprint


def is_step_completed(state: Dict[str, Any], step_name: str, fingerprint: Optional[str]) -> bool:
    exe = state.get("execution") or {}
    completed = exe.get("completed_steps") or {}
    if step_name not in completed:
        return False
    return completed[step_name] == fingerprint


def invalidate_steps(state: Dict[str, Any], step_names: Iterable[str]) -> list[str]:
    """Forget completion records for the given steps; returns the names dropped."""

    completed = (state.get("execution") or {}).get("completed_steps") or {}
    dropped: list[str] = []
    for name in step_names:
        if name in completed:
            del completed[name]
            dropped.append(name)
    if dropped:
        logger.info("Invalidated completion records: %s", ", ".join(dropped))
    return dropped


def record_error(state: Dict[str, Any], step_name: Optional[str], error: str) -> None:
    state.setdefault("execution", {}).setdefault("errors", []).append(
        {"step": step_name, "error": error}
    )
