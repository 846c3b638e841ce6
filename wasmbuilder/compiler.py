"""Compilation of the generated C sources into the wasm reactor module."""
from __future__ import annotations

from pathlib import Path
from typing import Iterable, List, Set
import os
import tempfile

from core.command_runner import CommandRunner, format_command
from core.console import Console

from .config import BuildConfig
from .errors import CompileError


def _collapsible_flags(config: BuildConfig) -> Set[str]:
    """Single-token flags the toolchain emits in more than one group.

    Only these are dropped when repeated; configured flags such as
    ``-include a.h -include b.h`` take a value from the next token and must
    stay intact.
    """

    toolchain = config.toolchain
    emitted = [
        f"-O{toolchain.optimization_level}",
        *toolchain.target_flags(),
        *toolchain.link_flags(),
        *config.layout.sizing_flags(),
        *config.layout.placement_flags(),
    ]
    return {flag for flag in emitted if flag.startswith("-") and flag != "-target"}


def _extend_unique(target: List[str], values: Iterable[str], *, collapsible: Set[str]) -> None:
    existing = set(target)
    for value in values:
        if value in collapsible and value in existing:
            continue
        target.append(value)
        existing.add(value)


def collect_sources(config: BuildConfig) -> List[Path]:
    """C sources from the generated and native directories, sorted per directory."""

    sources: List[Path] = []
    for directory in (config.generated_dir, config.native_dir):
        if directory.is_dir():
            sources.extend(sorted(path for path in directory.glob("*.c") if path.is_file()))
    return sources


def build_compile_command(config: BuildConfig, sources: Iterable[Path], output: Path) -> List[str]:
    """Full compiler line.

    Flags are taken in order from the target flags, the shared toolchain
    flags, the link flags and the memory placement flags. A flag the
    toolchain itself emits in several groups appears once; configured flags
    are passed through as given.
    """

    toolchain = config.toolchain
    collapsible = _collapsible_flags(config)
    command: List[str] = [toolchain.compiler]
    for group in (
        toolchain.target_flags(),
        config.toolchain_flags,
        toolchain.link_flags(),
        config.layout.placement_flags(),
    ):
        _extend_unique(command, group, collapsible=collapsible)
    command.extend(str(source) for source in sources)
    command.append(f"-I{config.include_dir}")
    command.extend(["-o", str(output)])
    return command


def compile_module(config: BuildConfig, runner: CommandRunner, *, console: Console) -> Path:
    """Compile the module and move it into place only when the compiler succeeds."""

    sources = collect_sources(config)
    target = config.artifact_path

    if console.dry_run:
        # Sources may not be generated yet in a dry run.
        planned = sources or [config.generated_dir / "*.c", config.native_dir / "*.c"]
        runner.run(
            build_compile_command(config, planned, target),
            cwd=config.source_root,
            note="Compile wasm module",
            stream=True,
        )
        return target

    if not sources:
        raise CompileError(
            f"No C sources found in {config.generated_dir} or {config.native_dir}; run the generate step first"
        )
    console.info(f"Compiling {len(sources)} source file(s) into {target}")

    fd, temp_name = tempfile.mkstemp(prefix=f".{target.name}.", suffix=".tmp", dir=config.output_root)
    os.close(fd)
    temp_path = Path(temp_name)
    try:
        command = build_compile_command(config, sources, temp_path)
        console.debug(format_command(command))
        runner.run(command, cwd=config.source_root, note="Compile wasm module", stream=True)
        if temp_path.stat().st_size == 0:
            raise CompileError(f"{config.toolchain.compiler} exited successfully but wrote no output")
        os.replace(temp_path, target)
    finally:
        temp_path.unlink(missing_ok=True)
    return target


__all__ = ["build_compile_command", "collect_sources", "compile_module"]
