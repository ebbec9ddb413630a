from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import List

DEFAULT_LOG_NAME = "provision.log"

_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
_DATEFMT = "%Y-%m-%dT%H:%M:%S%z"


def _open_file_handler(log_path: str) -> "tuple[logging.Handler, str]":
    try:
        Path(os.path.dirname(log_path) or ".").mkdir(parents=True, exist_ok=True)
        return logging.FileHandler(log_path), log_path
    except OSError:
        fallback = str(Path.cwd() / DEFAULT_LOG_NAME)
        return logging.FileHandler(fallback), fallback


def configure_logging(
    log_path: str,
    level: int = logging.INFO,
    also_console: bool = True,
) -> str:
    """Configure logging for one provisioning run.

    The log file always receives DEBUG records, so captured command output
    ends up there; ``level`` applies to the console only.

    Notes:
    - The state directory may not be writable. The requested path is tried
      first; otherwise a file in the working directory is used instead.

    Returns the actual file path being used.
    """

    root = logging.getLogger()

    # Avoid duplicate handlers if configure_logging() is called multiple times.
    if getattr(root, "_provisioner_configured", False):
        return getattr(root, "_provisioner_log_path", log_path)

    fmt = logging.Formatter(fmt=_FORMAT, datefmt=_DATEFMT)
    handlers: List[logging.Handler] = []

    file_handler, chosen_path = _open_file_handler(log_path)
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(fmt)
    handlers.append(file_handler)

    if also_console:
        console = logging.StreamHandler()
        console.setLevel(level)
        console.setFormatter(logging.Formatter("%(levelname)s %(message)s"))
        handlers.append(console)

    setattr(root, "_provisioner_prev_level", root.level)
    root.setLevel(logging.DEBUG)
    for h in handlers:
        root.addHandler(h)

    setattr(root, "_provisioner_configured", True)
    setattr(root, "_provisioner_log_path", chosen_path)
    setattr(root, "_provisioner_handlers", handlers)

    logging.getLogger(__name__).debug(
        "Logging initialized (requested=%s, actual=%s)", log_path, chosen_path
    )
    return chosen_path


def reset_logging() -> None:
    """Detach handlers installed by configure_logging()."""

    root = logging.getLogger()
    if not getattr(root, "_provisioner_configured", False):
        return
    for h in getattr(root, "_provisioner_handlers", []):
        root.removeHandler(h)
        h.close()
    root.setLevel(getattr(root, "_provisioner_prev_level", logging.WARNING))
    setattr(root, "_provisioner_configured", False)
