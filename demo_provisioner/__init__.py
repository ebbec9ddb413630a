"""Demo provisioner (Python-first, recipe-driven).

Core design goals:
- Ordered, single-threaded steps
- Idempotent steps (skip what is already there)
- Best-effort optional steps that never block the run
- Explicit confirmation before destroying existing state
- Centralized logging and a per-run report
"""

__all__ = []

__version__ = "0.1.0"
