"""Repository path constants used across Orion modules."""

from __future__ import annotations

import os
from pathlib import Path


def _resolve_repo_root() -> Path:
    override = os.getenv("ORION_REPO_ROOT")
    if override:
        return Path(override).expanduser().resolve()
    return Path(__file__).resolve().parents[2]


REPO_ROOT = _resolve_repo_root()
SRC_ROOT = REPO_ROOT / "src"


__all__ = ["REPO_ROOT", "SRC_ROOT"]
