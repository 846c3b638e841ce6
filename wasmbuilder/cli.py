"""Command line entry point selecting one of the build modes."""
from __future__ import annotations

from argparse import ArgumentParser, Namespace
from pathlib import Path
from typing import Iterable, List, Tuple
import sys

from core.command_runner import (
    CommandError,
    CommandRunner,
    RecordingCommandRunner,
    SubprocessCommandRunner,
)
from core.console import Console

from .config import BuildConfig, BuildMode, resolve_config
from .directories import ensure_directory
from .docker import build_image, run_container
from .pipeline import archive_output, run_local_pipeline


def _make_runner(dry_run: bool) -> SubprocessCommandRunner | RecordingCommandRunner:
    return RecordingCommandRunner() if dry_run else SubprocessCommandRunner()


def _emit_dry_run_output(runner: RecordingCommandRunner, *, workspace: Path) -> None:
    for line in runner.iter_formatted(workspace=workspace):
        print(line)


def _exit_status(returncode: int) -> int:
    if returncode > 0:
        return returncode
    if returncode < 0:
        # Killed by a signal; report it the way a shell would.
        return 128 - returncode
    return 1


def _parse_arguments(argv: Iterable[str]) -> Tuple[Namespace, List[str]]:
    parser = ArgumentParser(
        prog="wasmbuilder",
        description="Build the wasm reactor module locally or inside the builder container",
    )
    parser.add_argument(
        "mode",
        nargs="?",
        metavar="MODE",
        help="image, setup or containerized; omit (or pass anything else) for a local build",
    )
    parser.add_argument(
        "-S",
        "--source-root",
        type=Path,
        default=None,
        metavar="PATH",
        help="Repository root holding src/native, build/ and lib/ (default: current directory)",
    )
    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=None,
        metavar="FILE",
        help="Configuration file (default: $WASMBUILDER_CONFIG or <source-root>/wasmbuilder.toml)",
    )
    parser.add_argument("-n", "--dry-run", action="store_true", help="Print commands without executing them")
    parser.add_argument(
        "--archive",
        type=Path,
        default=None,
        metavar="PATH",
        help="Pack the output directory into PATH (.tar.zst, .tar.gz, .tar or .zip) after a successful build",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose output (maps to debug)")
    parser.add_argument(
        "-l",
        "--log",
        choices=["none", "error", "info", "debug"],
        default=None,
        help="Set log level (default: error)",
    )
    return parser.parse_known_args(list(argv))


def _log_level(args: Namespace) -> str:
    if args.log:
        return args.log
    return "debug" if args.verbose else "error"


def _resolve_archive(path: Path | None, config: BuildConfig) -> Path | None:
    if path is None:
        return None
    path = path.expanduser()
    return path if path.is_absolute() else config.source_root / path


def main(argv: Iterable[str] | None = None) -> int:
    args, unrecognized = _parse_arguments(sys.argv[1:] if argv is None else argv)
    console = Console(level=_log_level(args), dry_run=args.dry_run)
    # Anything argparse does not know (e.g. "--docker") is an unrecognized mode.
    mode = BuildMode.LOCAL if unrecognized else BuildMode.parse(args.mode)
    if unrecognized:
        console.debug(f"Unrecognized arguments {' '.join(unrecognized)}; building locally")
    runner = _make_runner(args.dry_run)

    try:
        # The platform query is informational, so it runs even for dry runs.
        config = resolve_config(
            mode,
            query_runner=SubprocessCommandRunner(),
            source_root=args.source_root,
            config_path=args.config,
        )
        console.debug(f"Mode: {mode.value}; platform: {config.platform or '-'}")
        toolchain = config.toolchain
        if toolchain.description:
            console.debug(f"Toolchain: {toolchain.name} ({toolchain.description})")
        else:
            console.debug(f"Toolchain: {toolchain.name}")
        console.debug(f"Toolchain flags: {config.flags_string}")
        archive = _resolve_archive(args.archive, config)
        status = _dispatch(mode, config, runner, console=console, archive=archive)
    except CommandError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return _exit_status(exc.returncode)
    except (OSError, ValueError, TypeError, RuntimeError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    if args.dry_run and isinstance(runner, RecordingCommandRunner):
        _emit_dry_run_output(runner, workspace=config.source_root)
    return status


def _dispatch(
    mode: BuildMode,
    config: BuildConfig,
    runner: CommandRunner,
    *,
    console: Console,
    archive: Path | None,
) -> int:
    if mode is BuildMode.IMAGE:
        return _handle_image(config, runner, console=console)
    if mode is BuildMode.SETUP:
        return _handle_setup(config, console=console)
    if mode is BuildMode.CONTAINERIZED:
        return _handle_containerized(config, runner, console=console, archive=archive)
    return _handle_local(config, runner, console=console, archive=archive)


def _handle_image(config: BuildConfig, runner: CommandRunner, *, console: Console) -> int:
    build_image(config, runner, console=console)
    return 0


def _handle_setup(config: BuildConfig, *, console: Console) -> int:
    ensure_directory(config.build_root, console=console)
    return 0


def _handle_containerized(
    config: BuildConfig,
    runner: CommandRunner,
    *,
    console: Console,
    archive: Path | None,
) -> int:
    result = run_container(config, runner, console=console)
    if archive is not None:
        archive_output(config, archive, console=console)
    return result.returncode


def _handle_local(
    config: BuildConfig,
    runner: CommandRunner,
    *,
    console: Console,
    archive: Path | None,
) -> int:
    result = run_local_pipeline(config, runner, console=console, archive=archive)
    console.info(f"Built {result.artifact}")
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
