"""Companion assets shipped next to the wasm module."""
from __future__ import annotations

from pathlib import Path
from typing import List
import json
import shutil

from core.console import Console

from .config import BuildConfig
from .errors import AssetError

ASSET_SUFFIXES = (".js", ".js.map", ".d.ts")
DESCRIPTOR_NAME = "package.json"


def companion_files(config: BuildConfig) -> List[str]:
    return [f"{name}{suffix}" for name in config.settings.assets for suffix in ASSET_SUFFIXES]


def copy_assets(config: BuildConfig, *, console: Console) -> List[Path]:
    copied: List[Path] = []
    for filename in companion_files(config):
        source = config.library_dir / filename
        target = config.output_root / filename
        if console.dry_run:
            console.dry(f"Would copy {source} to {target}")
        elif not source.is_file():
            raise AssetError(f"Companion asset '{source}' does not exist")
        else:
            shutil.copyfile(source, target)
            console.debug(f"Copied {source} -> {target}")
        copied.append(target)
    return copied


def write_descriptor(config: BuildConfig, *, console: Console) -> Path:
    target = config.output_root / DESCRIPTOR_NAME
    content = json.dumps({"type": config.settings.module_type}, indent=2)
    if console.dry_run:
        console.dry(f"Would write {target}: {content}")
        return target
    target.write_text(content, encoding="utf-8")
    return target


def assemble_assets(config: BuildConfig, *, console: Console) -> List[Path]:
    written = copy_assets(config, console=console)
    written.append(write_descriptor(config, console=console))
    console.info(f"Assembled {len(written)} asset(s) in {config.output_root}")
    return written


__all__ = ["ASSET_SUFFIXES", "DESCRIPTOR_NAME", "assemble_assets", "companion_files", "copy_assets", "write_descriptor"]
