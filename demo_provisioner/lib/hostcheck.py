from __future__ import annotations

import logging
import os
import re
from typing import Any, Dict, List, Optional

from .command import run_cmd, which

logger = logging.getLogger(__name__)

_NVCC_RELEASE_RE = re.compile(r"release (\d+\.\d+)")


def running_as_root() -> bool:
    geteuid = getattr(os, "geteuid", None)
    return geteuid is not None and geteuid() == 0


def os_release(path: str = "/etc/os-release") -> Dict[str, str]:
    out: Dict[str, str] = {}
    try:
        with open(path, encoding="utf-8") as f:
            for line in f:
                if "=" not in line:
                    continue
                k, v = line.rstrip("\n").split("=", 1)
                out[k] = v.strip().strip('"')
    except OSError:
        return {}
    return out


def nvcc_version() -> Optional[str]:
    if not which("nvcc"):
        return None
    r = run_cmd(["nvcc", "--version"], check=False)
    m = _NVCC_RELEASE_RE.search(r.stdout)
    return m.group(1) if m else None


def gpu_memory_mb() -> List[int]:
    """Total memory of each NVIDIA GPU in MiB (empty when unavailable)."""

    if not which("nvidia-smi"):
        return []
    r = run_cmd(
        ["nvidia-smi", "--query-gpu=memory.total", "--format=csv,noheader,nounits"],
        check=False,
    )
    if r.returncode != 0:
        return []
    out: List[int] = []
    for line in r.stdout.splitlines():
        line = line.strip()
        if line.isdigit():
            out.append(int(line))
    return out


def probe_host() -> Dict[str, Any]:
    rel = os_release()
    return {
        "os_id": rel.get("ID"),
        "os_version": rel.get("VERSION_ID"),
        "root": running_as_root(),
        "nvidia_smi": which("nvidia-smi") is not None,
        "nvcc_version": nvcc_version(),
        "gpu_memory_mb": gpu_memory_mb(),
    }
