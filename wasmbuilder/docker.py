"""Builder image creation and containerized pipeline runs."""
from __future__ import annotations

from typing import List
import os

from core.command_runner import CommandResult, CommandRunner, format_command
from core.console import Console

from .config import BuildConfig

FALLBACK_USER = (1000, 1000)


def container_user() -> str:
    """``uid:gid`` for the container so bind-mounted output is not owned by root."""

    if os.name == "posix" and hasattr(os, "getuid"):
        return f"{os.getuid()}:{os.getegid()}"
    uid, gid = FALLBACK_USER
    return f"{uid}:{gid}"


def image_build_command(config: BuildConfig) -> List[str]:
    return [
        "docker",
        "build",
        f"--platform={config.require_platform()}",
        "-t",
        config.settings.image,
        ".",
    ]


def container_run_command(config: BuildConfig, *, user: str | None = None) -> List[str]:
    mount = f"type=bind,source={config.build_root},target={config.settings.container_build_dir}"
    command = [
        "docker",
        "run",
        "--rm",
        f"--platform={config.require_platform()}",
        "--user",
        user or container_user(),
        "--mount",
        mount,
        config.settings.image,
    ]
    command.extend(config.settings.container_command)
    return command


def build_image(config: BuildConfig, runner: CommandRunner, *, console: Console) -> CommandResult:
    command = image_build_command(config)
    # Always shown so the operator can replay it by hand.
    print(f"> {format_command(command)}\n", flush=True)
    console.info(f"Building image {config.settings.image} for {config.platform}")
    return runner.run(
        command,
        cwd=config.source_root,
        note="Build builder image",
        stream=True,
    )


def run_container(config: BuildConfig, runner: CommandRunner, *, console: Console) -> CommandResult:
    command = container_run_command(config)
    console.info(f"Running pipeline in {config.settings.image} ({config.platform})")
    console.debug(format_command(command))
    return runner.run(
        command,
        cwd=config.source_root,
        env={"DOCKER_BUILDKIT": "1"},
        note="Run containerized build",
        stream=True,
    )


__all__ = [
    "build_image",
    "container_run_command",
    "container_user",
    "image_build_command",
    "run_container",
]
