"""Idempotent creation of output directories."""
from __future__ import annotations

from pathlib import Path

from core.console import Console


def ensure_directory(path: Path, *, console: Console | None = None) -> Path:
    """Create ``path`` and its parents; an existing directory is success."""

    if console is not None and console.dry_run:
        console.dry(f"Would create directory {path}")
        return path
    try:
        path.mkdir(parents=True)
    except FileExistsError:
        if not path.is_dir():
            raise
    else:
        if console is not None:
            console.debug(f"Created directory {path}")
    return path


__all__ = ["ensure_directory"]
