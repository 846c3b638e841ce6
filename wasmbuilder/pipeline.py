"""Local build pipeline: generate, compile, assemble."""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import List

from core.archive import ArchiveArtifact, ArchiveManager
from core.command_runner import CommandResult, CommandRunner
from core.console import Console

from .assets import assemble_assets
from .compiler import compile_module
from .config import BuildConfig
from .directories import ensure_directory


@dataclass(slots=True)
class PipelineResult:
    artifact: Path
    assets: List[Path] = field(default_factory=list)
    archive: Path | None = None


def generate_sources(config: BuildConfig, runner: CommandRunner, *, console: Console) -> CommandResult:
    console.info("Generating C sources")
    return runner.run(
        list(config.settings.generate_command),
        cwd=config.source_root,
        note="Generate sources",
        stream=True,
    )


def archive_output(config: BuildConfig, target: Path, *, console: Console) -> Path:
    manager = ArchiveManager(console)
    return manager.create_archive(
        artifact=ArchiveArtifact(source_dir=config.output_root, label=config.settings.artifact),
        target_path=target,
    )


def run_local_pipeline(
    config: BuildConfig,
    runner: CommandRunner,
    *,
    console: Console,
    archive: Path | None = None,
) -> PipelineResult:
    """Run every step in order; the first failure propagates and stops the rest."""

    ensure_directory(config.output_root, console=console)
    generate_sources(config, runner, console=console)
    artifact = compile_module(config, runner, console=console)
    assets = assemble_assets(config, console=console)
    result = PipelineResult(artifact=artifact, assets=assets)
    if archive is not None:
        result.archive = archive_output(config, archive, console=console)
    return result


__all__ = ["PipelineResult", "archive_output", "generate_sources", "run_local_pipeline"]
